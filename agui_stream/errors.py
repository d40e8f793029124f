"""Exception hierarchy for the AG-UI stream client."""

from __future__ import annotations


class AgUiStreamError(Exception):
    """Base class for all errors raised or reported by agui_stream."""


class ParseError(AgUiStreamError):
    """A non-empty frame could not be decoded into an AG-UI event."""

    def __init__(self, message: str, frame: str = "") -> None:
        super().__init__(message)
        self.frame = frame


class TransportError(AgUiStreamError):
    """Socket-level failure. Always recoverable through reconnection."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReconnectExhausted(AgUiStreamError):
    """The reconnect budget is used up; the connection stays in error."""

    def __init__(self, attempts: int, last_event_id: str | None = None) -> None:
        super().__init__(f"Reconnect failed after {attempts} attempt(s)")
        self.attempts = attempts
        self.last_event_id = last_event_id


class PatchApplyError(AgUiStreamError):
    """A single JSON Patch operation could not be applied."""

    def __init__(self, message: str, operation: object = None) -> None:
        super().__init__(message)
        self.operation = operation


class PatchTestFailed(PatchApplyError):
    """A JSON Patch ``test`` operation did not match the document."""


class InvalidTransitionError(AgUiStreamError):
    """A connection status transition outside the state machine was attempted."""


__all__ = [
    "AgUiStreamError",
    "InvalidTransitionError",
    "ParseError",
    "PatchApplyError",
    "PatchTestFailed",
    "ReconnectExhausted",
    "TransportError",
]
