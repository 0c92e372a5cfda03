"""
Relay server that turns upstream PCM WebSockets into MP3 event streams.

RelayServer is the HTTP side of the relay, responsible for:
- Accepting subscriptions and validating their upstream URL
- Running one StreamSession per subscriber until either side goes away
"""

__all__ = [
    "RelayServer",
    "SSEEmitter",
    "SessionState",
    "StreamSession",
]

from .server import RelayServer
from .session import SessionState, StreamSession
from .sse import SSEEmitter
