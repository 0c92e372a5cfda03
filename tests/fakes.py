"""Fakes for stream session tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import Any
from unittest.mock import Mock

from aiohttp import WSMessage, WSMsgType, WSServerHandshakeError

from aiopcmrelay.config import RelayConfig
from aiopcmrelay.errors import RelayError

FRAME_SAMPLES = 1152
FRAME_BYTES = FRAME_SAMPLES * 2


def make_config(**overrides: Any) -> RelayConfig:
    """Return settings tuned for fast tests."""
    values: dict[str, Any] = {
        "flush_interval": 60.0,
        "retry_delay": 0.0,
        "max_retries": 3,
        "connect_timeout": 1.0,
    }
    values.update(overrides)
    return RelayConfig(**values)


def handshake_error(status: int) -> WSServerHandshakeError:
    """Build the error aiohttp raises for a rejected WebSocket upgrade."""
    return WSServerHandshakeError(
        Mock(real_url="ws://upstream/stream"),
        (),
        status=status,
        message="Invalid response status",
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class FakeEmitter:
    """Records what a session writes to its subscriber."""

    def __init__(self) -> None:
        self.start_calls = 0
        self.mp3_events: list[str] = []
        self.error_events: list[str] = []
        self.failures: list[RelayError] = []
        self.finished = False
        self.writes_after_finish = 0

    @property
    def started(self) -> bool:
        return self.start_calls > 0

    async def start(self) -> None:
        self.start_calls += 1

    async def send_mp3(self, mp3: str) -> None:
        if self.finished:
            self.writes_after_finish += 1
            return
        self.mp3_events.append(mp3)

    async def send_error(self, message: str) -> None:
        if self.finished:
            self.writes_after_finish += 1
            return
        self.error_events.append(message)

    async def fail(self, error: RelayError) -> None:
        self.failures.append(error)

    async def finish(self) -> None:
        self.finished = True


class DisconnectedEmitter(FakeEmitter):
    """Emitter whose subscriber went away, writes fail with a reset."""

    def __init__(self, *, fail_on_start: bool = False) -> None:
        super().__init__()
        self.fail_on_start = fail_on_start
        self.failed_writes = 0

    async def start(self) -> None:
        await super().start()
        if self.fail_on_start:
            raise ConnectionResetError("Cannot write to closing transport")

    async def send_mp3(self, mp3: str) -> None:
        if self.finished:
            self.writes_after_finish += 1
            return
        self.failed_writes += 1
        raise ConnectionResetError("Cannot write to closing transport")


class FakeWebSocket:
    """Upstream socket fed by the test through ``push_*``."""

    def __init__(self) -> None:
        self._messages: asyncio.Queue[WSMessage] = asyncio.Queue()
        self._exception: BaseException | None = None
        self.closed = False
        self.close_code: int | None = None

    def push_binary(self, data: bytes) -> None:
        self._messages.put_nowait(WSMessage(WSMsgType.BINARY, data, None))

    def push_text(self, data: str) -> None:
        self._messages.put_nowait(WSMessage(WSMsgType.TEXT, data, None))

    def push_error(self, error: BaseException) -> None:
        self._exception = error
        self._messages.put_nowait(WSMessage(WSMsgType.ERROR, error, None))

    def push_close(self, code: int, reason: str) -> None:
        self.close_code = code
        self._messages.put_nowait(WSMessage(WSMsgType.CLOSE, code, reason))

    async def receive(self) -> WSMessage:
        if self.closed and self._messages.empty():
            return WSMessage(WSMsgType.CLOSED, None, None)
        msg = await self._messages.get()
        if msg.type is WSMsgType.CLOSE:
            self.closed = True
        return msg

    async def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        self.close_code = 1000
        self._messages.put_nowait(WSMessage(WSMsgType.CLOSED, None, None))
        return True

    def exception(self) -> BaseException | None:
        return self._exception


class _ProbeResponse:
    def __init__(self, status: int) -> None:
        self.status = status

    async def __aenter__(self) -> _ProbeResponse:
        return self

    async def __aexit__(self, *args: object) -> None:
        return None


class FakeHttp:
    """
    Stand-in for ``aiohttp.ClientSession``.

    ``probes`` yields one probe status (or exception) per attempt, the last
    entry repeats. ``sockets`` yields one WebSocket (or exception, or None to
    hang) per handshake.
    """

    def __init__(
        self,
        probes: Iterable[int | BaseException],
        sockets: Iterable[FakeWebSocket | BaseException | None] = (),
    ) -> None:
        self._probes = list(probes)
        self._sockets = list(sockets)
        self.probe_urls: list[str] = []
        self.connect_urls: list[str] = []
        self.closed = False

    def get(self, url: str, **_kwargs: Any) -> _ProbeResponse:
        self.probe_urls.append(url)
        index = min(len(self.probe_urls), len(self._probes)) - 1
        outcome = self._probes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return _ProbeResponse(outcome)

    async def ws_connect(self, url: str, **_kwargs: Any) -> FakeWebSocket:
        self.connect_urls.append(url)
        outcome = self._sockets[len(self.connect_urls) - 1]
        if outcome is None:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        assert outcome is not None
        return outcome

    async def close(self) -> None:
        self.closed = True
