"""Error taxonomy for the tracking SDK.

None of these escape the public facade operations: they are raised by the
lower layers and reported through the debug log stream by the callers.
"""

from __future__ import annotations


class FunctionaryError(Exception):
    """Base SDK error."""


class ConfigurationError(FunctionaryError):
    """Raised when the API key (or another required setting) is missing."""


class RecordValidationError(FunctionaryError):
    """Raised for unsupported models, empty id lists or malformed payloads."""


class TransportError(FunctionaryError):
    """Terminal delivery failure for one request of a flushed batch."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ClientRequestError(TransportError):
    """Endpoint rejected the payload (status below 500)."""


class ServerRequestError(TransportError):
    """Endpoint failed while handling the payload (status 500 and above)."""


class NetworkError(TransportError):
    """Request never produced a response (timeout, DNS, connection reset)."""


class MissingContextError(FunctionaryError):
    """Raised when a context-targeted call finds no entity in context."""
