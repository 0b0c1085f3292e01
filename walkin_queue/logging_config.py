"""Logging setup shared by the service and the CLI clients."""

from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO", logfile: str | None = None) -> None:
    """Configure the root logger once (console, plus a file if given)."""
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if logfile:
        handler = logging.FileHandler(Path(logfile).resolve(), encoding="utf-8")
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # paho-mqtt's own logger is chatty at DEBUG.
    logging.getLogger("paho").setLevel(max(root.level, logging.INFO))
