"""aiopcmrelay: relay live PCM WebSocket audio to browsers as MP3 Server-Sent Events."""

from __future__ import annotations

from aiopcmrelay.config import RelayConfig
from aiopcmrelay.errors import RelayError
from aiopcmrelay.server import RelayServer, SessionState, SSEEmitter, StreamSession

__all__ = [
    "RelayConfig",
    "RelayError",
    "RelayServer",
    "SSEEmitter",
    "SessionState",
    "StreamSession",
]
