"""Text suggestions for waiting customers (Gemini `generateContent`).

The queue never depends on this: `suggest()` always returns a string, falling
back to a fixed message when the service is unreachable or returns nothing.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

import requests

from .errors import SuggestionUnavailable

log = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-preview-05-20"
API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

EMPTY_RESPONSE_TEXT = "Sorry, couldn't generate a response."
FAILURE_TEXT = "An error occurred while fetching suggestions."


def style_ideas_prompt(service_name: str) -> str:
    return (
        f'I\'m waiting at a salon to get a "{service_name}". Give me 3 creative and trendy style '
        "ideas or hair care tips related to this service. Keep it concise and exciting. "
        "Format it with titles and short descriptions."
    )


def extract_text(result: Any) -> str | None:
    """First candidate's first text part, or None."""
    try:
        text = result["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text else None


class SuggestionClient:
    def __init__(
        self,
        *,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(self, prompt: str) -> str | None:
        """One generateContent call. Raises SuggestionUnavailable on any failure."""
        url = API_URL.format(model=self.model)
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            r = self.session.post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
            if not r.ok:
                raise SuggestionUnavailable(f"API call failed: {r.status_code}")
            return extract_text(r.json())
        except (requests.RequestException, ValueError) as e:
            raise SuggestionUnavailable(str(e)) from e

    def suggest(self, prompt: str) -> str:
        try:
            text = self.request(prompt)
        except SuggestionUnavailable as e:
            log.warning("suggestion request failed: %s", e.message)
            return FAILURE_TEXT
        return text or EMPTY_RESPONSE_TEXT

    def suggest_async(self, prompt: str, callback: Callable[[str], None]) -> threading.Thread:
        """Fire-and-forget: run `suggest` on a daemon thread and hand the text to `callback`."""

        def run() -> None:
            text = self.suggest(prompt)
            try:
                callback(text)
            except Exception:
                log.exception("suggestion callback failed")

        t = threading.Thread(target=run, name="suggestion", daemon=True)
        t.start()
        return t
