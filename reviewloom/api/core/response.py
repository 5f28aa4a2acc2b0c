"""Unified response envelope and exception handlers.

Success:  {"success": true,  "message": "...", "data": {...}}
Failure:  {"success": false, "message": "...", "error": {"type": "...", ...}}

Stack traces are attached to 500 responses only in development mode.
"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.config import is_development
from ...core.exceptions import RateLimitError, ReviewLoomError

logger = logging.getLogger(__name__)

_HTTP_ERROR_TYPES = {
    400: "VALIDATION_ERROR",
    401: "AUTHENTICATION_ERROR",
    403: "AUTHORIZATION_ERROR",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMIT_EXCEEDED",
}


def success_response(
    data: Any = None,
    message: str = "Success",
    status_code: int = 200,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "message": message, "data": data},
    )


def error_response(
    message: str = "Internal server error",
    status_code: int = 500,
    error_type: str = "INTERNAL_ERROR",
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"type": error_type, "message": message}
    if details:
        error.update(details)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error},
        headers=headers,
    )


# ── Exception handlers ──────────────────────────────────────────────────

async def reviewloom_error_handler(request: Request, exc: ReviewLoomError) -> JSONResponse:
    headers = None
    details = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
        details = {"retryAfter": exc.retry_after}

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return error_response(exc.message, exc.status_code, exc.error_type, details, headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    message = errors[0]["message"] if len(errors) == 1 else "Validation failed"
    return error_response(message, 400, "VALIDATION_ERROR", {"details": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(
        message,
        exc.status_code,
        _HTTP_ERROR_TYPES.get(exc.status_code, "HTTP_ERROR"),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    details = None
    if is_development():
        details = {"stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))}
    return error_response("Internal server error", 500, "INTERNAL_ERROR", details)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReviewLoomError, reviewloom_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
