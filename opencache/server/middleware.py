"""Request logging and upload authorization for the cache endpoint."""

from __future__ import annotations

import hmac
import logging
import re
import time

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("opencache.access")

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


class RequestLoggingMiddleware:
    """Log ``METHOD path status duration`` for every HTTP request.

    Pure ASGI so streamed NAR bodies pass through untouched.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "%s %s %d %.0fms", scope["method"], scope["path"], status, duration_ms
            )


def check_upload_secret(request: Request, secret: str) -> Response | None:
    """Return a 401 response unless the request carries the upload secret.

    Clients send ``Authorization: Bearer <secret>``.  With no secret
    configured every write is allowed (private deployments behind a
    firewall).
    """
    if not secret:
        return None
    match = _BEARER.match(request.headers.get("authorization", ""))
    if match is None or not hmac.compare_digest(
        match.group(1).encode("utf-8"), secret.encode("utf-8")
    ):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    return None
