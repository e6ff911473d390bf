"""Error taxonomy shared by the chat core and the HTTP surface."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Kinds of user-visible failures; each maps to a deterministic toast."""

    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    ACTIVE_TURN = "active_turn"
    STREAM_FAILED = "stream_failed"
    TIMEOUT = "timeout"
    PERSISTENCE_FAILED = "persistence_failed"
    INTERNAL = "internal"


ERROR_TOASTS: Dict[ErrorKind, str] = {
    ErrorKind.BAD_REQUEST: "That request could not be understood. Please try again.",
    ErrorKind.UNAUTHORIZED: "You need to sign in before continuing this chat.",
    ErrorKind.FORBIDDEN: "This chat belongs to another account.",
    ErrorKind.NOT_FOUND: "We could not find that chat.",
    ErrorKind.RATE_LIMITED: "You have reached your daily message limit. Please try again tomorrow.",
    ErrorKind.ACTIVE_TURN: "Please wait for the current response to finish.",
    ErrorKind.STREAM_FAILED: "The assistant ran into a problem while responding. Please try again.",
    ErrorKind.TIMEOUT: "The assistant took too long to respond. Please try again.",
    ErrorKind.PERSISTENCE_FAILED: "The response could not be saved. Please resend your message.",
    ErrorKind.INTERNAL: "Something went wrong. Please try again.",
}


def toast_for(kind: ErrorKind) -> str:
    """Return the UI message for an error kind."""
    return ERROR_TOASTS.get(kind, ERROR_TOASTS[ErrorKind.INTERNAL])


class APIError(Exception):
    """Application-level API error with status/code mapping."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[ErrorKind] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = dict(details or {})
        if kind is not None:
            self.details.setdefault("kind", kind.value)
            self.details.setdefault("toast", toast_for(kind))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }
