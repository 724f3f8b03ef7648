"""HTTP(S) server collaborator: FastAPI application and uvicorn server handle."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request, Response

from .errors import ServerError
from .logs import level_number

RESPONSE_TIME_HEADER = "X-Response-Time"
_STARTUP_POLL_SECONDS = 0.01


def create_app(
    *,
    title: str,
    version: str | None,
    logger: logging.Logger,
    log_level: str | None = None,
) -> FastAPI:
    """Application with response-time and request-logging middleware installed."""
    app = FastAPI(title=title, version=version or "0.0.0", docs_url=None, redoc_url=None, openapi_url=None)
    request_level = level_number(log_level)

    @app.middleware("http")
    async def response_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[RESPONSE_TIME_HEADER] = f"{elapsed_ms:.2f}ms"
        if request_level is not None:
            logger.log(
                request_level,
                "%s %s -> %d (%.2fms)",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
        return response

    return app


class HttpServer:
    """Runs one uvicorn server for `app` as a background task on the current loop."""

    def __init__(
        self,
        app: FastAPI,
        *,
        host: str,
        logger: logging.Logger,
        ssl_keyfile: str | None = None,
        ssl_certfile: str | None = None,
    ) -> None:
        self.app = app
        self.host = host
        self.port: int | None = None
        self._logger = logger
        self._ssl_keyfile = ssl_keyfile
        self._ssl_certfile = ssl_certfile
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_secure(self) -> bool:
        return self._ssl_certfile is not None

    @property
    def is_listening(self) -> bool:
        return self._server is not None and self._server.started and not self._server.should_exit

    async def listen(self, port: int) -> None:
        if self._task is not None:
            raise ServerError(f"server is already listening on port {self.port}")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=port,
            lifespan="off",
            log_config=None,
            access_log=False,
            ssl_keyfile=self._ssl_keyfile,
            ssl_certfile=self._ssl_certfile,
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._serve(self._server, port))
        while not self._server.started:
            if self._task.done():
                await self._raise_startup_failure(port)
            await asyncio.sleep(_STARTUP_POLL_SECONDS)

        self.port = self._bound_port() or port
        scheme = "https" if self.is_secure else "http"
        self._logger.info("Listening on %s://%s:%d", scheme, self.host, self.port)

    async def _serve(self, server: uvicorn.Server, port: int) -> None:
        # uvicorn exits the process when it cannot bind.
        try:
            await server.serve()
        except SystemExit as error:
            raise ServerError(f"could not listen on {self.host}:{port}") from error

    async def _raise_startup_failure(self, port: int) -> None:
        task = self._task
        self._task = None
        self._server = None
        if task is not None:
            await task
        raise ServerError(f"server on {self.host}:{port} stopped before it started listening")

    def _bound_port(self) -> int | None:
        if self._server is None:
            return None
        for server in getattr(self._server, "servers", []):
            for socket in server.sockets:
                return socket.getsockname()[1]
        return None

    async def close(self) -> None:
        if self._task is None or self._server is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._task = None
            self._server = None
        self._logger.debug("Stopped server on port %s", self.port)
