"""Runtime settings.

Values come from environment variables with sensible defaults; the CLI
overrides them with command-line flags.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return float(raw)


@dataclass
class Settings:
    mqtt_host: str = field(default_factory=lambda: os.getenv("WALKIN_MQTT_HOST", "127.0.0.1"))
    mqtt_port: int = field(default_factory=lambda: int(os.getenv("WALKIN_MQTT_PORT", "1883")))
    namespace: str = field(default_factory=lambda: os.getenv("WALKIN_NAMESPACE", "walkin/v1"))
    log_level: str = field(default_factory=lambda: os.getenv("WALKIN_LOG_LEVEL", "INFO"))
    log_file: str | None = field(default_factory=lambda: os.getenv("WALKIN_LOG_FILE") or None)

    # Waiting entries older than this are removed; None keeps them forever.
    max_wait_minutes: float | None = field(default_factory=lambda: _env_float("WALKIN_MAX_WAIT_MINUTES", None))
    sweep_every: float = field(default_factory=lambda: float(os.getenv("WALKIN_SWEEP_EVERY", "30")))

    store_retries: int = field(default_factory=lambda: int(os.getenv("WALKIN_STORE_RETRIES", "3")))
    store_backoff: float = field(default_factory=lambda: float(os.getenv("WALKIN_STORE_BACKOFF", "0.05")))

    gemini_api_key: str = field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))
    gemini_model: str = field(
        default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-2.5-flash-preview-05-20")
    )
    suggest_timeout: float = field(default_factory=lambda: float(os.getenv("WALKIN_SUGGEST_TIMEOUT", "15")))
