"""Nix binary cache HTTP API.

Endpoints::

    GET  /nix-cache-info      cache metadata
    HEAD /<hash>.narinfo      presence check
    GET  /<hash>.narinfo      fetch narinfo
    PUT  /<hash>.narinfo      upload narinfo (re-signed with our key, if any)
    HEAD /nar/<filename>      presence check
    GET  /nar/<filename>      download NAR (streamed)
    PUT  /nar/<filename>      upload NAR (streamed)
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from opencache.config import CacheConfig
from opencache.core.signing import resign_narinfo
from opencache.errors import InvalidKeyFormat
from opencache.models.narinfo import CacheInfo
from opencache.server.middleware import check_upload_secret
from opencache.storage import StorageBackend

logger = logging.getLogger(__name__)

NARINFO_MEDIA_TYPE = "text/x-nix-narinfo"
NAR_MEDIA_TYPE = "application/x-nix-nar"
MAX_NARINFO_BYTES = 1024 * 1024


async def _read_body(request: Request, limit: int) -> bytes | None:
    """Read the request body, or ``None`` once it grows past *limit* bytes."""
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            return None
    return bytes(body)


class CacheEndpoints:
    """Route handlers bound to one storage backend and configuration."""

    def __init__(self, storage: StorageBackend, config: CacheConfig) -> None:
        self._storage = storage
        self._config = config
        self._cache_info = CacheInfo(
            store_dir=config.store_dir, priority=config.cache_priority
        ).to_text()

    def routes(self) -> list[Route]:
        return [
            Route("/nix-cache-info", self.cache_info, methods=["GET"]),
            Route("/nar/{filename}", self.nar, methods=["GET", "HEAD", "PUT"]),
            Route("/{hash}.narinfo", self.narinfo, methods=["GET", "HEAD", "PUT"]),
        ]

    async def cache_info(self, request: Request) -> Response:
        return PlainTextResponse(self._cache_info)

    async def narinfo(self, request: Request) -> Response:
        hash = request.path_params["hash"]
        if request.method == "PUT":
            return await self._put_narinfo(request, hash)
        if request.method == "HEAD":
            exists = await self._storage.has_narinfo(hash)
            return Response(status_code=200 if exists else 404, media_type=NARINFO_MEDIA_TYPE)

        content = await self._storage.get_narinfo(hash)
        if content is None:
            return PlainTextResponse("Not Found", status_code=404)
        return Response(content, media_type=NARINFO_MEDIA_TYPE)

    async def _put_narinfo(self, request: Request, hash: str) -> Response:
        denied = check_upload_secret(request, self._config.upload_secret)
        if denied is not None:
            return denied

        body = await _read_body(request, MAX_NARINFO_BYTES)
        if body is None:
            return JSONResponse({"error": "Payload too large"}, status_code=413)
        try:
            content = body.decode("utf-8")
        except UnicodeDecodeError:
            return JSONResponse({"error": "narinfo must be UTF-8"}, status_code=400)
        if not content.strip():
            return JSONResponse({"error": "Empty body"}, status_code=400)

        if self._config.signing_key:
            try:
                content = resign_narinfo(content, self._config.signing_key)
            except InvalidKeyFormat:
                raise
            except ValueError as exc:
                return JSONResponse({"error": f"Malformed narinfo: {exc}"}, status_code=400)

        await self._storage.put_narinfo(hash, content)
        return PlainTextResponse("OK")

    async def nar(self, request: Request) -> Response:
        filename = request.path_params["filename"]
        if request.method == "PUT":
            denied = check_upload_secret(request, self._config.upload_secret)
            if denied is not None:
                return denied
            await self._storage.put_nar_stream(filename, request.stream())
            return PlainTextResponse("OK")
        if request.method == "HEAD":
            exists = await self._storage.has_nar(filename)
            return Response(status_code=200 if exists else 404, media_type=NAR_MEDIA_TYPE)

        stream = await self._storage.get_nar_stream(filename)
        if stream is None:
            return PlainTextResponse("Not Found", status_code=404)
        return StreamingResponse(stream, media_type=NAR_MEDIA_TYPE)
