"""Server-Sent Events response for one subscriber."""

from __future__ import annotations

import logging
from contextlib import suppress

from aiohttp import web

from aiopcmrelay.errors import RelayError
from aiopcmrelay.models import ErrorEvent, Mp3Event, format_sse

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class SSEEmitter:
    """
    Writes events to the subscriber of a stream session.

    Headers are only sent by ``start``, which the session calls once the
    upstream socket is open. Until then a terminal failure is returned as a
    regular JSON response; afterwards it is written as a final event.
    """

    def __init__(self, request: web.Request) -> None:
        """Wrap the subscription ``request``."""
        self._request = request
        self._stream: web.StreamResponse | None = None
        self._error_response: web.Response | None = None
        self._closed = False

    @property
    def started(self) -> bool:
        """Whether the event stream headers were sent."""
        return self._stream is not None

    @property
    def closed(self) -> bool:
        """Whether no more events will be written."""
        return self._closed

    @property
    def response(self) -> web.StreamResponse:
        """The response the request handler must return."""
        if self._stream is not None:
            return self._stream
        if self._error_response is not None:
            return self._error_response
        # Closed before upstream ever connected and without a reported failure.
        return web.Response(status=204)

    async def start(self) -> None:
        """Send the event stream headers, later calls do nothing."""
        if self._stream is not None or self._closed:
            return
        stream = web.StreamResponse(status=200, headers=SSE_HEADERS)
        await stream.prepare(self._request)
        self._stream = stream
        logger.debug("Event stream started for %s", self._request.remote)

    async def send_mp3(self, mp3: str) -> None:
        """Write an encoded batch."""
        await self._send(Mp3Event(mp3=mp3))

    async def send_error(self, message: str) -> None:
        """Write a recoverable failure, the stream continues."""
        await self._send(ErrorEvent(error=message))

    async def fail(self, error: RelayError) -> None:
        """Report a terminal failure once and stop writing."""
        if self._closed:
            return
        if self._stream is None:
            self._error_response = web.json_response(
                text=error.to_body().to_json(), status=error.status
            )
        else:
            with suppress(ConnectionError):
                await self._stream.write(format_sse(error.to_event()))
        self._closed = True

    async def finish(self) -> None:
        """Stop writing and end the stream if it was started."""
        if self._closed and self._stream is None:
            return
        self._closed = True
        if self._stream is not None:
            with suppress(ConnectionError, RuntimeError):
                await self._stream.write_eof()

    async def _send(self, payload: Mp3Event | ErrorEvent) -> None:
        if self._closed or self._stream is None:
            logger.debug("Dropping %s, stream is not writable", type(payload).__name__)
            return
        await self._stream.write(format_sse(payload))
