"""Payloads written to subscribers of the relay.

Every Server-Sent Event carries one JSON object in its ``data`` field, either
``{"mp3": <base64>}`` for an encoded batch or ``{"error": <message>}`` for a
failure reported in-band. Terminal failures that happen before the stream
starts are returned as a plain JSON body instead.
"""

from __future__ import annotations

from dataclasses import dataclass

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

__all__ = [
    "ErrorBody",
    "ErrorEvent",
    "Mp3Event",
    "format_sse",
]


@dataclass
class Mp3Event(DataClassORJSONMixin):
    """One flush cycle worth of encoded audio."""

    mp3: str
    """Base64 encoded MP3 bytes."""


@dataclass
class ErrorEvent(DataClassORJSONMixin):
    """Failure reported inside an already started stream."""

    error: str
    """Human readable message."""
    code: int | None = None
    """HTTP-like status of a terminal failure, unset for recoverable ones."""
    reason: str | None = None
    """Close reason received from upstream, if any."""

    class Config(BaseConfig):
        """Config for serializing error events."""

        omit_none = True


@dataclass
class ErrorBody(DataClassORJSONMixin):
    """JSON body of a terminal failure returned before the stream started."""

    error: str
    details: str | None = None
    code: int | None = None
    """Upstream WebSocket close code."""
    reason: str | None = None
    """Upstream WebSocket close reason."""

    class Config(BaseConfig):
        """Config for serializing error bodies."""

        omit_none = True


def format_sse(payload: Mp3Event | ErrorEvent) -> bytes:
    """Render ``payload`` as a single ``data:`` event."""
    return b"data: " + payload.to_jsonb() + b"\n\n"
