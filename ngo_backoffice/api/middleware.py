"""API layer — Request middleware.

- Request ID injection (X-Request-ID header)
- Structured access logging
- Security headers on every response
- Exception handlers → clean ErrorResponse
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ngo_backoffice.api.schemas import ErrorResponse
from ngo_backoffice.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BackofficeError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from ngo_backoffice.logging import bind_request_context, clear_request_context, get_logger
from ngo_backoffice.security.audit_records import RequestMeta

log = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a unique X-Request-ID to every request and response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        bind_request_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log each request with timing information."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        response = await call_next(request)
        duration_ms = round((time.time() - start) * 1000, 2)

        log.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=duration_ms,
            request_id=getattr(request.state, "request_id", None),
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response


def _status_for(exc: BackofficeError) -> tuple[int, str]:
    if isinstance(exc, AuthenticationError):
        return 401, "unauthorized"
    if isinstance(exc, AuthorizationError):
        return 403, "forbidden"
    if isinstance(exc, RateLimitError):
        return 429, "rate_limited"
    if isinstance(exc, ValidationError):
        return 400, "validation_error"
    if isinstance(exc, NotFoundError):
        return 404, "not_found"
    if isinstance(exc, ConflictError):
        return 409, "conflict"
    return 500, "internal_error"


def build_error_handler() -> Any:
    """Return a FastAPI exception handler for BackofficeError subclasses."""

    async def handler(request: Request, exc: BackofficeError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        status_code, code = _status_for(exc)

        headers: dict[str, str] = {}
        if isinstance(exc, AuthenticationError):
            # Never say which check failed.
            detail = None
        elif isinstance(exc, ValidationError):
            detail = exc.errors or None
        elif status_code == 500:
            detail = None
            log.error("request_failed", error=repr(exc), path=request.url.path)
            audit = getattr(request.app.state, "audit_logger", None)
            if audit is not None:
                audit.record_api_error(
                    RequestMeta.from_request(request), "api", status_code, exc.message
                )
        else:
            detail = exc.context or None
        if isinstance(exc, RateLimitError):
            headers["Retry-After"] = str(exc.retry_after_seconds)

        body = ErrorResponse(
            error=exc.message if status_code != 500 else "Internal server error",
            code=code,
            detail=detail,
            request_id=request_id,
        )
        return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)

    return handler


def build_validation_handler() -> Any:
    """Map FastAPI request validation failures to 400 with field-level detail."""

    async def handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error="Invalid request",
            code="validation_error",
            detail=errors,
            request_id=getattr(request.state, "request_id", None),
        )
        return JSONResponse(status_code=400, content=body.model_dump())

    return handler


def build_unhandled_error_handler() -> Any:
    """Catch-all for unexpected exceptions: log, audit, and answer 500."""

    async def handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("unhandled_exception", path=request.url.path, error=repr(exc))
        audit = getattr(request.app.state, "audit_logger", None)
        if audit is not None:
            audit.record_api_error(
                RequestMeta.from_request(request), "api", 500, f"{type(exc).__name__}: {exc}"
            )
        body = ErrorResponse(
            error="Internal server error",
            code="internal_error",
            request_id=getattr(request.state, "request_id", None),
        )
        return JSONResponse(status_code=500, content=body.model_dump())

    return handler
