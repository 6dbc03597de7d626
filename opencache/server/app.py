"""Starlette ASGI application for the cache endpoint.

Usage::

    from opencache.config import CacheConfig
    from opencache.server import create_app

    app = create_app(CacheConfig())
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from opencache.config import CacheConfig
from opencache.errors import CacheError, InvalidResourceName, NotFound
from opencache.server.middleware import RequestLoggingMiddleware
from opencache.server.routes import CacheEndpoints
from opencache.storage import StorageBackend, create_storage

logger = logging.getLogger(__name__)


async def _cache_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, NotFound):
        return JSONResponse({"error": "Not Found"}, status_code=404)
    if isinstance(exc, InvalidResourceName):
        return JSONResponse({"error": str(exc)}, status_code=400)
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)


def create_app(config: CacheConfig, storage: StorageBackend | None = None) -> Starlette:
    """Build the cache application.

    Parameters
    ----------
    config:
        Operational parameters; read-only for the lifetime of the app.
    storage:
        Backend to serve from.  Defaults to ``create_storage(config)``.
    """
    backend = storage if storage is not None else create_storage(config)
    endpoints = CacheEndpoints(backend, config)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        aclose = getattr(backend, "aclose", None)
        if aclose is not None:
            await aclose()

    app = Starlette(
        debug=False,
        routes=endpoints.routes(),
        middleware=[Middleware(RequestLoggingMiddleware)],
        exception_handlers={CacheError: _cache_error_handler},
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.storage = backend
    return app
