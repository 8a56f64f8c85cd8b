"""Starlette application and uvicorn runner for the manifest server."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.routing import Route

from ..configuration import ServerSettings
from .builder import ManifestBuilder, ManifestCache
from .gate import AdmissionGate
from .routes import file_handler, health_handler, manifest_handler
from .scheduler import RebuildTicker

logger = logging.getLogger("fileferry.server.app")

_REPEATED_SLASHES = re.compile(r"/{2,}")


class SlashNormalizerMiddleware:
    """Collapse repeated slashes in the request path before routing."""

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: Dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] == "http" and "//" in scope.get("path", ""):
            scope = dict(scope)
            scope["path"] = _REPEATED_SLASHES.sub("/", scope["path"])
            scope.pop("raw_path", None)
        await self.app(scope, receive, send)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        client = request.client.host if request.client else "-"
        logger.info("Request: %s %s from %s", request.method, request.url.path, client)
        return await call_next(request)


def create_app(
    settings: ServerSettings,
    *,
    builder: Optional[ManifestBuilder] = None,
    schedule_rebuilds: bool = True,
) -> Starlette:
    """Build the ASGI app.

    The rebuild ticker is started from the lifespan, so it only runs while the
    app is being served.
    """
    cache = builder.cache if builder else ManifestCache(settings.cache_file)
    builder = builder or ManifestBuilder(settings.files_dir, cache)
    ticker = RebuildTicker(builder, settings.rebuild_interval)
    gate = AdmissionGate(settings.max_concurrent_downloads, settings.gate_policy)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        settings.files_dir.mkdir(parents=True, exist_ok=True)
        log_startup_banner(settings)
        if schedule_rebuilds:
            ticker.start()
        try:
            yield
        finally:
            logger.info("Manifest server shutting down")
            ticker.stop()

    # File bodies go out as opaque octet streams; only the manifest is compressed.
    manifest_middleware = (
        [Middleware(GZipMiddleware, minimum_size=500)] if settings.compression else None
    )

    routes = [
        Route("/", manifest_handler, methods=["GET"], middleware=manifest_middleware),
        Route("/health", health_handler, methods=["GET"]),
        Route("/file/{path:path}", file_handler, methods=["GET"]),
    ]

    middleware = [Middleware(SlashNormalizerMiddleware)]
    if settings.cors_allowed_origins:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=list(settings.cors_allowed_origins),
                allow_methods=["*"],
                allow_headers=["*"],
            )
        )
    if settings.request_logging:
        middleware.append(Middleware(RequestLoggingMiddleware))

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.settings = settings
    app.state.cache = cache
    app.state.builder = builder
    app.state.ticker = ticker
    app.state.gate = gate
    return app


def log_startup_banner(settings: ServerSettings) -> None:
    logger.info("========================================")
    logger.info("fileferry server starting")
    logger.info("========================================")
    logger.info("Port: %s", settings.port)
    logger.info("Hostname: %s", settings.host or "All interfaces")
    logger.info("Files directory: %s", settings.files_dir)
    logger.info("Cache file: %s", settings.cache_file)
    logger.info("Cache interval: %s seconds", settings.rebuild_interval)
    logger.info(
        "Max concurrent downloads: %s (%s)",
        settings.max_concurrent_downloads or "Unlimited",
        settings.gate_policy,
    )
    logger.info("Path traversal protection: %s", settings.path_traversal_protection)
    logger.info("Compression: %s", settings.compression)
    logger.info("========================================")


class ServerState(str, Enum):
    """Server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class FileServer:
    """Runs the manifest server under uvicorn, blocking or in a background thread."""

    settings: ServerSettings

    _state: ServerState = field(default=ServerState.STOPPED, init=False)
    _server: Optional[Any] = field(default=None, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def bind_host(self) -> str:
        return self.settings.host or "0.0.0.0"

    def start(self, blocking: bool = False) -> bool:
        """Start serving.

        Args:
            blocking: If True, serve in the current thread until shutdown.

        Returns:
            True if the server reached the running state (or ran to completion
            when blocking).
        """
        if self._state == ServerState.RUNNING:
            logger.warning("Server is already running")
            return False

        import uvicorn

        self._state = ServerState.STARTING
        config = uvicorn.Config(
            create_app(self.settings),
            host=self.bind_host,
            port=self.settings.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        if blocking:
            self._state = ServerState.RUNNING
            try:
                asyncio.run(self._server.serve())
            except Exception as e:
                logger.exception("Server error: %s", e)
                self._state = ServerState.ERROR
                return False
            self._state = ServerState.STOPPED
            return True

        self._thread = threading.Thread(
            target=self._run_in_thread,
            daemon=True,
            name="fileferry-server",
        )
        self._thread.start()

        for _ in range(50):  # Wait up to 5 seconds
            if self._server.started:
                self._state = ServerState.RUNNING
                break
            if self._state == ServerState.ERROR:
                break
            time.sleep(0.1)

        return self._state == ServerState.RUNNING

    def _run_in_thread(self) -> None:
        try:
            asyncio.run(self._server.serve())
        except Exception as e:
            logger.exception("Server thread error: %s", e)
            self._state = ServerState.ERROR
            return
        if self._state != ServerState.ERROR:
            self._state = ServerState.STOPPED

    def stop(self) -> bool:
        if self._state != ServerState.RUNNING:
            logger.warning("Server is not running")
            return False

        self._state = ServerState.STOPPING
        if self._server:
            self._server.should_exit = True
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._state = ServerState.STOPPED
        self._server = None
        self._thread = None
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "host": self.bind_host,
            "port": self.settings.port,
            "url": (
                f"http://{self.bind_host}:{self.settings.port}"
                if self._state == ServerState.RUNNING
                else None
            ),
        }


__all__ = ["FileServer", "ServerState", "create_app", "log_startup_banner"]
