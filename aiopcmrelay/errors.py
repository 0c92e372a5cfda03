"""Errors that end a stream session."""

from __future__ import annotations

from .models import ErrorBody, ErrorEvent


class RelayError(Exception):
    """Base class for terminal relay failures."""

    status: int = 503
    """Status used when the failure is returned before the stream started."""
    message: str = "Relay failure"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: str | None = None,
        code: int | None = None,
        reason: str | None = None,
    ) -> None:
        """Create the error, ``message`` overrides the class default."""
        if message is not None:
            self.message = message
        self.details = details
        self.code = code
        self.reason = reason
        super().__init__(self.message)

    def to_body(self) -> ErrorBody:
        """Return the JSON body for a response whose headers were not sent yet."""
        return ErrorBody(
            error=self.message, details=self.details, code=self.code, reason=self.reason
        )

    def to_event(self) -> ErrorEvent:
        """Return the in-band event for a stream that already started."""
        return ErrorEvent(error=self.message, code=self.status, reason=self.reason)


class MissingParameterError(RelayError):
    """The subscription request did not name an upstream URL."""

    status = 400
    message = "Missing required parameter: url"


class UpstreamNotFoundError(RelayError):
    """The upstream resource does not exist, retrying will not help."""

    status = 404
    message = "WebSocket resource not found"


class UpstreamConnectionError(RelayError):
    """The upstream WebSocket failed with an unrecoverable error."""

    status = 502
    message = "WebSocket connection failed"


class UpstreamClosedError(RelayError):
    """The upstream WebSocket closed with a reason that is not retryable."""

    status = 503
    message = "WebSocket connection failed"


class RetriesExhaustedError(RelayError):
    """Transient failures persisted past the retry ceiling."""

    status = 503
    message = "Connection failed after max retries"


class UpstreamTimeoutError(RelayError):
    """The upstream WebSocket handshake did not finish in time."""

    status = 504
    message = "WebSocket connection timeout"
