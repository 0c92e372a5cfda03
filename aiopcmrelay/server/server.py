"""HTTP entry point that hands each subscription to its own stream session."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from aiohttp import hdrs, web

from aiopcmrelay.config import RelayConfig
from aiopcmrelay.errors import MissingParameterError

from .session import StreamSession
from .sse import SSEEmitter

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class RelayServer:
    """Serve the stream route and track the sessions it created."""

    def __init__(self, config: RelayConfig) -> None:
        """Build the application for ``config``, nothing listens before ``start``."""
        self.config = config
        self._sessions: set[StreamSession] = set()
        self._runner: web.AppRunner | None = None
        self.app = web.Application(middlewares=[self._cors_middleware])
        self.app.router.add_get(config.stream_path, self.on_stream_request)
        self.app.on_response_prepare.append(self._add_cors_headers)
        self.app.on_shutdown.append(self._close_sessions)
        logger.debug("RelayServer initialized for path %s", config.stream_path)

    @property
    def sessions(self) -> set[StreamSession]:
        """Sessions currently being served."""
        return self._sessions

    async def start(self) -> None:
        """Start listening on the configured host and port."""
        # Cancelling the handler on disconnect is what tears the session down.
        self._runner = web.AppRunner(self.app, handler_cancellation=True)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info("Relay listening on http://%s:%d", self.config.host, self.config.port)

    async def stop(self) -> None:
        """Stop listening and close all sessions."""
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Relay stopped")

    async def on_stream_request(self, request: web.Request) -> web.StreamResponse:
        """Relay the upstream named by the ``url`` query parameter as SSE."""
        emitter = SSEEmitter(request)
        url = request.query.get("url")
        if not url:
            logger.debug("Rejecting subscription from %s without url", request.remote)
            await emitter.fail(MissingParameterError())
            return emitter.response

        session = StreamSession(self.config.rewrite_host(url), self.config, emitter)
        logger.info("Subscriber %s attached as session %s", request.remote, session.session_id)
        self._sessions.add(session)
        try:
            await session.run()
        finally:
            self._sessions.discard(session)
        return emitter.response

    async def _close_sessions(self, _app: web.Application) -> None:
        for session in list(self._sessions):
            await session.close()

    def _origin_allowed(self, request: web.Request) -> str | None:
        origin = request.headers.get(hdrs.ORIGIN)
        if origin is not None and origin in self.config.allowed_origins:
            return origin
        return None

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        """Answer CORS preflight requests, other requests pass through."""
        if request.method != hdrs.METH_OPTIONS or hdrs.ORIGIN not in request.headers:
            return await handler(request)
        response = web.Response(status=204)
        if self._origin_allowed(request) is not None:
            response.headers[hdrs.ACCESS_CONTROL_ALLOW_METHODS] = hdrs.METH_GET
            requested = request.headers.get(hdrs.ACCESS_CONTROL_REQUEST_HEADERS)
            if requested:
                response.headers[hdrs.ACCESS_CONTROL_ALLOW_HEADERS] = requested
        return response

    async def _add_cors_headers(self, request: web.Request, response: web.StreamResponse) -> None:
        """Add the CORS headers before any response is sent, streams included."""
        origin = self._origin_allowed(request)
        if origin is None:
            return
        response.headers[hdrs.ACCESS_CONTROL_ALLOW_ORIGIN] = origin
        response.headers[hdrs.ACCESS_CONTROL_ALLOW_CREDENTIALS] = "true"
        response.headers.add(hdrs.VARY, hdrs.ORIGIN)
