"""Error taxonomy and the shared error envelope.

Every failure the engine reports to a caller is a `QueueError` subclass with a
stable `code`. The MQTT service turns them into `ErrorResponse` replies so
customers, staff and the board all see the same shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str
    retryable: bool = False

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {
            "type": "error",
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    code = "queue_error"
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message, self.retryable)


class AlreadyQueued(QueueError):
    """The customer already holds an active entry."""

    code = "already_queued"


class NotFound(QueueError):
    code = "not_found"


class IllegalTransition(QueueError):
    code = "illegal_transition"


class StaleEntry(QueueError):
    """The entry changed between the caller's read and the conditional write."""

    code = "stale_entry"
    retryable = True


class Unauthorized(QueueError):
    code = "unauthorized"


class ValidationError(QueueError):
    code = "bad_request"


class StoreUnavailable(QueueError):
    code = "store_unavailable"
    retryable = True


class SuggestionUnavailable(QueueError):
    # Raised inside the suggestion client only; callers get fallback text.
    code = "suggestion_unavailable"
    retryable = True
