"""Relay of one upstream PCM WebSocket to one Server-Sent Events subscriber."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from contextlib import suppress
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING
from uuid import uuid4

from aiohttp import (
    ClientError,
    ClientSession,
    ClientTimeout,
    ClientWebSocketResponse,
    WSMsgType,
    WSServerHandshakeError,
)

from aiopcmrelay.audio import AudioAccumulator, LowPassFilter, decode_pcm16, encode_chunks_to_mp3
from aiopcmrelay.config import RelayConfig, probe_url
from aiopcmrelay.errors import (
    RelayError,
    RetriesExhaustedError,
    UpstreamClosedError,
    UpstreamConnectionError,
    UpstreamNotFoundError,
    UpstreamTimeoutError,
)

if TYPE_CHECKING:
    from .sse import SSEEmitter

logger = logging.getLogger(__name__)

NOT_FOUND_STATUS = 404
AUDIO_PROCESSING_ERROR = "Audio processing error"
MP3_CONVERSION_ERROR = "MP3 conversion error"

EncodeBatch = Callable[..., str | None]
"""Signature of ``encode_chunks_to_mp3``."""


class SessionState(Enum):
    """Lifecycle states of a stream session."""

    IDLE = "idle"
    PROBING = "probing"
    """Checking that the upstream resource exists before opening a socket."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    """Upstream socket open, frames flow into the accumulator."""
    RETRYING = "retrying"
    """Waiting the retry delay after a transient failure."""
    CLOSED = "closed"
    """Terminal, all resources released."""


class StreamSession:
    """
    Owns the upstream socket, filter state, buffer and flush loop of one subscriber.

    ``run`` drives the session through its states until the upstream becomes
    permanently unavailable or ``close`` is called because the subscriber went
    away. Nothing is shared with other sessions.
    """

    def __init__(
        self,
        url: str,
        config: RelayConfig,
        emitter: SSEEmitter,
        *,
        http_session: ClientSession | None = None,
        encode: EncodeBatch = encode_chunks_to_mp3,
        session_id: str | None = None,
    ) -> None:
        """
        Create a session, no I/O happens before ``run``.

        Args:
            url: Upstream WebSocket URL, host rewrites already applied.
            config: Relay settings.
            emitter: Writer for the subscriber's event stream.
            http_session: Optional client session, one is created and owned otherwise.
            encode: Batch encoder, replaceable for tests.
            session_id: Optional identifier used in log output.
        """
        self.session_id = session_id or uuid4().hex[:8]
        self.url = url
        self._config = config
        self._emitter = emitter
        self._http = http_session
        self._owns_http = http_session is None
        self._encode = encode
        self._logger = logger.getChild(self.session_id)
        self._filter = LowPassFilter(config.sample_rate, config.low_pass_cutoff)
        self.filter_state = 0.0
        """Unrounded last filter output of the most recent frame."""
        self.accumulator = AudioAccumulator(
            logger=self._logger, max_samples=config.max_buffered_samples
        )
        self.retry_count = 0
        self.state = SessionState.IDLE
        self.transitions: list[SessionState] = [SessionState.IDLE]
        self._ws: ClientWebSocketResponse | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._flush_lock = asyncio.Lock()
        self._run_task: asyncio.Task[object] | None = None
        self._run_cancelled = False
        self._released = False
        self._last_failure: str | None = None

    @property
    def alive(self) -> bool:
        """Whether the session has not been closed yet."""
        return self.state is not SessionState.CLOSED

    def _set_state(self, state: SessionState) -> None:
        if not self.alive or state is self.state:
            return
        self._logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def run(self) -> None:
        """Drive the session until it closes, terminal failures go to the emitter."""
        if not self.alive:
            return
        self._run_task = asyncio.current_task()
        if self._http is None:
            self._http = ClientSession()
        try:
            await self._connect_loop()
        except RelayError as err:
            self._logger.warning("Session failed with %d: %s", err.status, err.message)
            await self._emitter.fail(err)
        except ConnectionError:
            self._logger.info("Subscriber disconnected")
        except asyncio.CancelledError:
            if not self._run_cancelled:
                raise
            self._logger.debug("Session run cancelled by close")
        finally:
            await self.close()

    async def close(self) -> None:
        """
        Release every resource of the session.

        This is the teardown path for a subscriber disconnect and is safe to
        call from any state, from any task and more than once.
        """
        if self._released:
            return
        self._released = True
        self._set_state(SessionState.CLOSED)
        self._logger.debug("Closing session")

        current = asyncio.current_task()
        run_task = self._run_task
        if run_task is not None and run_task is not current and not run_task.done():
            self._run_cancelled = True
            _ = run_task.cancel()

        flush_task, self._flush_task = self._flush_task, None
        if flush_task is not None and flush_task is not current:
            _ = flush_task.cancel()
            with suppress(asyncio.CancelledError):
                await flush_task

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            try:
                _ = await ws.close()
            except Exception:
                self._logger.exception("Failed to close upstream websocket")

        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

        await self._emitter.finish()
        self._logger.info("Session closed")

    # ------------------------------------------------------------------
    # Upstream connection
    # ------------------------------------------------------------------
    async def _connect_loop(self) -> None:
        while self.alive:
            self._set_state(SessionState.PROBING)
            status = await self._probe()
            if status == NOT_FOUND_STATUS:
                raise UpstreamNotFoundError(
                    "WebSocket endpoint not found", details="Resource does not exist"
                )
            if status is None or status in self._config.retryable_statuses:
                await self._retry()
                continue

            self._set_state(SessionState.CONNECTING)
            ws = await self._open_socket()
            if ws is None:
                await self._retry()
                continue

            self._ws = ws
            self._set_state(SessionState.CONNECTED)
            self._logger.info("Connected to remote WebSocket: %s", self.url)
            await self._emitter.start()
            self._ensure_flush_loop()
            await self._receive(ws)
            self._ws = None
            if not ws.closed:
                _ = await ws.close()
            if not self.alive:
                return
            await self._retry()

    async def _probe(self) -> int | None:
        """Return the probe status, or None when the probe itself failed."""
        assert self._http is not None
        target = probe_url(self.url)
        try:
            async with self._http.get(
                target, timeout=ClientTimeout(total=self._config.connect_timeout)
            ) as response:
                self._logger.debug("Probe of %s returned %d", target, response.status)
                return response.status
        except (ClientError, TimeoutError) as err:
            self._last_failure = str(err) or type(err).__name__
            self._logger.debug("Probe of %s failed: %s", target, self._last_failure)
            return None

    async def _open_socket(self) -> ClientWebSocketResponse | None:
        """Open the upstream socket, None signals a transient failure."""
        assert self._http is not None
        try:
            async with asyncio.timeout(self._config.connect_timeout):
                return await self._http.ws_connect(self.url)
        except TimeoutError as err:
            raise UpstreamTimeoutError() from err
        except WSServerHandshakeError as err:
            if err.status == NOT_FOUND_STATUS:
                raise UpstreamNotFoundError(details=err.message) from err
            if err.status in self._config.retryable_statuses:
                self._last_failure = f"handshake returned {err.status}"
                self._logger.debug("Upstream handshake returned %d", err.status)
                return None
            raise UpstreamConnectionError(details=err.message) from err
        except ClientError as err:
            raise UpstreamConnectionError(details=str(err)) from err

    async def _retry(self) -> None:
        """Wait for the next attempt or fail once the ceiling is reached."""
        if self.retry_count >= self._config.max_retries:
            self._logger.error("Max retries reached for %s", self.url)
            raise RetriesExhaustedError(details=self._last_failure)
        self.retry_count += 1
        self._set_state(SessionState.RETRYING)
        self._logger.warning(
            "Retrying connection attempt %d of %d", self.retry_count, self._config.max_retries
        )
        await asyncio.sleep(self._config.retry_delay)

    async def _receive(self, ws: ClientWebSocketResponse) -> None:
        """
        Feed binary frames into the pipeline until the socket closes or fails.

        Returns when the failure is retryable or caused by ``close``, raises the
        terminal error otherwise. Close reasons and socket errors are classified
        the same way.
        """
        while True:
            msg = await ws.receive()
            if msg.type is WSMsgType.BINARY:
                await self._process_frame(msg.data)
            elif msg.type is WSMsgType.TEXT:
                self._logger.debug("Ignoring text message from upstream")
            elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                break
            elif msg.type is WSMsgType.ERROR:
                if not self.alive:
                    return
                error = ws.exception() or msg.data
                self._logger.info("WebSocket error: %s", error)
                self._classify_failure(ws.close_code, str(error), UpstreamConnectionError)
                return

        if not self.alive:
            return
        code = ws.close_code
        reason = msg.extra if msg.type is WSMsgType.CLOSE and msg.extra else ""
        self._logger.info("WebSocket closed with code %s and reason: %s", code, reason)
        self._classify_failure(code, reason, UpstreamClosedError)

    def _classify_failure(
        self, code: int | None, reason: str, terminal: type[RelayError]
    ) -> None:
        """Raise the error for a permanent upstream failure, return if it is retryable."""
        if str(NOT_FOUND_STATUS) in reason:
            raise UpstreamNotFoundError(code=code, reason=reason)
        if any(str(status) in reason for status in self._config.retryable_statuses):
            self._last_failure = f"upstream failed with code {code}: {reason}"
            return
        raise terminal(code=code, reason=reason)

    # ------------------------------------------------------------------
    # Audio pipeline
    # ------------------------------------------------------------------
    async def _process_frame(self, data: bytes) -> None:
        """Decode, filter and buffer one frame in arrival order."""
        if not self.alive:
            return
        try:
            samples = decode_pcm16(data)
            result = self._filter.apply(samples, self.filter_state)
        except Exception:
            self._logger.exception("Failed to process audio frame")
            await self._emitter.send_error(AUDIO_PROCESSING_ERROR)
            return
        self.filter_state = result.last_value
        self.accumulator.push(result.filtered)

    def _ensure_flush_loop(self) -> None:
        if self._flush_task is None and self.alive:
            self._flush_task = asyncio.get_running_loop().create_task(self._flush_loop())

    async def _flush_loop(self) -> None:
        """Flush on a fixed cadence, ticks missed while encoding are dropped."""
        loop = asyncio.get_running_loop()
        interval = self._config.flush_interval
        next_tick = loop.time() + interval
        try:
            while self.alive:
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
                _ = await self.flush()
                next_tick += interval
                now = loop.time()
                if next_tick <= now:
                    missed = int((now - next_tick) // interval) + 1
                    self._logger.warning("Flush overran its interval, skipping %d tick(s)", missed)
                    next_tick += missed * interval
        except ConnectionError:
            self._logger.info("Subscriber disconnected while flushing")
            await self.close()
        except Exception:
            self._logger.exception("Unexpected error in flush loop")
            await self.close()

    async def flush(self) -> bool:
        """
        Run one flush cycle.

        Returns True when an MP3 event was written. A cycle requested while
        another one is still encoding is skipped.
        """
        if self._flush_lock.locked():
            self._logger.debug("Previous flush still running, skipping tick")
            return False
        async with self._flush_lock:
            chunks = self.accumulator.drain()
            if not chunks:
                return False
            self._logger.debug(
                "Audio buffer chunks: %d, first chunk size: %d", len(chunks), len(chunks[0])
            )
            mp3 = await self._encode_batch(chunks)
            if mp3 is None or not self.alive:
                return False
            await self._emitter.send_mp3(mp3)
            return True

    async def _encode_batch(self, chunks: Sequence[tuple[int, ...]]) -> str | None:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                partial(
                    self._encode,
                    chunks,
                    sample_rate=self._config.sample_rate,
                    bit_rate=self._config.bit_rate,
                ),
            )
        except Exception:
            self._logger.exception("MP3 conversion failed")
            if self.alive:
                await self._emitter.send_error(MP3_CONVERSION_ERROR)
            return None
