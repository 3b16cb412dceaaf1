"""FastAPI static file server for the generated site.

The scheduler, when supplied, is started and shut down with the app lifespan.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, status
from fastapi.responses import PlainTextResponse, Response

from .config import get_settings
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".html": "text/html",
    ".js": "text/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
}
DEFAULT_MIME_TYPE = "application/octet-stream"


class ForbiddenPath(ValueError):
    """A request path resolved outside the public root."""


def public_root() -> Path:
    """Directory served over HTTP, from ``Settings.public_dir`` (env PUBLIC_DIR)."""
    return get_settings().public_dir.expanduser().resolve()


def content_type_for(path: Path | str) -> str:
    return MIME_TYPES.get(Path(path).suffix, DEFAULT_MIME_TYPE)


def resolve_public_path(root: Path, request_path: str) -> Optional[Path]:
    """
    Map a URL path onto a file under ``root``.

    ``/`` maps to ``index.html``. Raises ForbiddenPath when the resolved path
    escapes the root; the filesystem is not read in that case. Returns None
    for paths the OS cannot represent, such as ones with an embedded NUL.
    """
    if request_path in ("", "/"):
        request_path = "/index.html"
    base = root.resolve()
    try:
        resolved = (base / request_path.lstrip("/")).resolve()
    except ValueError:
        return None
    if resolved != base and base not in resolved.parents:
        raise ForbiddenPath(request_path)
    return resolved


def _read_file(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except OSError:
        return None


def create_app(
    public_dir: Optional[Path] = None, scheduler: Optional[Scheduler] = None
) -> FastAPI:
    """Build the static site app; ``public_dir`` defaults to ``public_root()`` per request."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.shutdown()

    app = FastAPI(title="Daily Bugle", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.scheduler = scheduler

    @app.get("/{request_path:path}")
    def serve_static(request_path: str) -> Response:
        root = public_dir if public_dir is not None else public_root()
        try:
            path = resolve_public_path(root, "/" + request_path)
        except ForbiddenPath:
            logger.warning("Rejected path outside public root: %s", request_path)
            return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)

        data = _read_file(path) if path is not None and path.is_file() else None
        if data is None:
            return PlainTextResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)
        # Explicit header keeps Starlette from appending a charset.
        return Response(
            content=data,
            status_code=status.HTTP_200_OK,
            headers={"Content-Type": content_type_for(path)},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("daily_bugle.server:app", host=settings.host, port=settings.port)
