"""
Request middleware — logging, timing, correlation IDs, body limit.

Provides:
    • X-Request-ID header injection (correlation ID)
    • Request/response timing (X-Process-Time header)
    • Structured log entry per request
    • Body size limit for the alert write API (declared and streamed)
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from leo.app.core.errors import error_body
from leo.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# Paths that would otherwise flood the log
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with timing, inject correlation ID.

    Requests whose declared Content-Length exceeds ``max_body_bytes`` are
    answered with 413 before reaching the route.
    Bodies sent without a Content-Length are capped by
    :class:`BodyLimitMiddleware` as they are read.
    """

    def __init__(self, app, max_body_bytes: int = 256 * 1024):
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )

        start = time.perf_counter()

        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_body_bytes:
            logger.warning(
                "%s %s rejected: body %s bytes > %d [%s]",
                request.method, path, declared, self.max_body_bytes, client_ip,
            )
            response = JSONResponse(
                status_code=413,
                content=error_body(
                    413, "PAYLOAD_TOO_LARGE",
                    f"Payload exceeds {self.max_body_bytes} bytes",
                ),
            )
            response.headers["X-Request-ID"] = request_id
            set_request_context()
            return response

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, duration_ms, client_ip,
                extra={"duration_ms": duration_ms, "status_code": 500},
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                log_level,
                "%s %s → %d (%.1fms) [%s]",
                request.method, path, response.status_code,
                duration_ms, client_ip,
                extra={
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        set_request_context()

        return response


class BodyLimitMiddleware:
    """
    Cap the request body actually received, whatever the headers claim.

    Counts ``http.request`` chunks as the route reads them and raises a 413
    ``HTTPException`` once the running total passes ``max_body_bytes``.
    Chunked uploads carry no Content-Length, so this is the only guard
    they meet.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int = 256 * 1024):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    logger.warning(
                        "%s %s rejected: streamed body > %d bytes",
                        scope.get("method"), scope.get("path"), self.max_body_bytes,
                    )
                    raise HTTPException(
                        status_code=413,
                        detail=f"Payload exceeds {self.max_body_bytes} bytes",
                    )
            return message

        await self.app(scope, limited_receive, send)
