"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes for the ingestion pipeline
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Taxonomy:
    ValidationError   — malformed/insufficient input, never retried
    PersistenceError  — store unavailable or write rejected
    TransportError    — broker / feed connectivity

Usage:
    from leo.app.core.errors import ValidationError, register_error_handlers

    raise ValidationError("invalid coordinates", field="latitude")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from leo.app.core.config import settings
from leo.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class LeoError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(LeoError):
    """Alert payload could not be normalised (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class PersistenceError(LeoError):
    """Durable store unavailable or write rejected (503)."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Alert store {operation} failed: {message}",
            status_code=503,
            error_code="PERSISTENCE_ERROR",
            details={"operation": operation, **details},
        )


class TransportError(LeoError):
    """Broker or external feed unreachable (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Transport '{service}' failed: {message}",
            status_code=502,
            error_code="TRANSPORT_ERROR",
            details={"service": service, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def error_body(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """``{"error": {...}}`` envelope shared by handlers and middleware."""
    error: Dict[str, Any] = {
        "code": error_code,
        "message": message,
        "status": status_code,
    }
    if details:
        error["details"] = details
    request_id = get_request_context().get("request_id")
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body = error_body(status_code, error_code, message, details)
    if not settings.is_production:
        body["error"]["path"] = request.url.path
        body["error"]["method"] = request.method
    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """
    Map the taxonomy onto HTTP.

        ValidationError / bad JSON body  → 400
        oversized body                   → 413
        unknown route / method           → 404 / 405
        PersistenceError                 → 503
        TransportError                   → 502
        anything else                    → 500
    """

    @app.exception_handler(LeoError)
    async def handle_leo_error(request: Request, exc: LeoError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(
            level, "%s %s rejected [%s]: %s",
            request.method, request.url.path, exc.error_code, exc.message,
            extra={"status_code": exc.status_code, "endpoint": request.url.path},
        )
        return _error_response(
            request, exc.status_code, exc.error_code, exc.message, exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', '')}"
            for e in exc.errors()
        ]
        logger.warning("Rejected request: %s", "; ".join(problems))
        return _error_response(
            request, 400, "VALIDATION_ERROR",
            "alert payload must be a JSON object", {"errors": problems},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        error_code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        response = _error_response(
            request, exc.status_code, error_code, str(exc.detail),
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        details = None
        if settings.DEBUG:
            details = {"traceback": traceback.format_exception(type(exc), exc, exc.__traceback__)}
        return _error_response(
            request, 500, "INTERNAL_ERROR",
            str(exc) if settings.DEBUG else "Internal server error", details,
        )
