"""HTTP route handlers for the manifest server."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, MutableMapping

from starlette.concurrency import run_in_threadpool
from starlette.responses import FileResponse, JSONResponse, Response

from ..errors import AccessError
from .access import resolve_served_file

if TYPE_CHECKING:
    from starlette.requests import Request

logger = logging.getLogger("fileferry.server.routes")

Scope = MutableMapping[str, Any]


class GatedFileResponse(FileResponse):
    """File response that hands its admission slot back once the body is sent."""

    def __init__(self, *args: Any, release: Callable[[], None], chunk_size: int, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.chunk_size = chunk_size
        self._release = release
        self._released = False

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._release()

    async def __call__(self, scope: Scope, receive: Any, send: Any) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.release()


async def health_handler(request: "Request") -> JSONResponse:
    """Liveness check."""
    return JSONResponse({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "fileferry",
    })


async def manifest_handler(request: "Request") -> Response:
    """Return the published manifest verbatim, or ``[]`` before the first build."""
    cache = request.app.state.cache

    try:
        payload = await run_in_threadpool(cache.read_text)
    except OSError as exc:
        logger.error("Error reading manifest cache %s: %s", cache.path, exc)
        return JSONResponse({"error": "Error reading file list"}, status_code=500)

    return Response(payload, media_type="application/json")


async def file_handler(request: "Request") -> Response:
    """Stream one file from the served root under the admission gate."""
    settings = request.app.state.settings
    gate = request.app.state.gate
    relative_path = request.path_params.get("path", "")

    try:
        full_path = await run_in_threadpool(
            resolve_served_file,
            settings.files_dir,
            relative_path,
            traversal_protection=settings.path_traversal_protection,
            max_file_size=settings.max_file_size,
        )
        await gate.acquire(relative_path)
    except AccessError as exc:
        return Response(status_code=exc.status_code)

    logger.info("Serving file: %s", relative_path)
    try:
        return GatedFileResponse(
            full_path,
            media_type="application/octet-stream",
            release=gate.release,
            chunk_size=settings.stream_buffer_size,
        )
    except Exception:
        gate.release()
        raise


__all__ = ["GatedFileResponse", "file_handler", "health_handler", "manifest_handler"]
