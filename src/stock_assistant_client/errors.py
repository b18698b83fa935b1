from __future__ import annotations


class StockAssistantError(Exception):
    """Base class for every error raised by the client core."""

    recoverable = False


class InvalidInputError(StockAssistantError):
    """A blank submission, rejected before any I/O."""


class ConcurrentRequestRejectedError(StockAssistantError):
    """A new turn was started while another one is still in flight."""


class TransportFailureError(StockAssistantError):
    """Connect, read or write failure on one of the backend channels."""

    recoverable = True

    def __init__(self, message: str, *, channel: str = "", status_code: int | None = None):
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code


class ParseFailureError(StockAssistantError):
    """A push line or response body that could not be decoded."""

    recoverable = True


class SessionClosedError(StockAssistantError):
    """The session was stopped and its transport released."""
