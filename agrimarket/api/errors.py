"""
Exception handlers rendering failures as structured JSON.

Every error body has the same shape: a stable ``error`` kind the client can
branch on, a human readable ``message`` and the ``request_id`` that ties the
response to the server logs.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from agrimarket.core.config import get_settings
from agrimarket.core.logging import get_logger, get_request_id
from agrimarket.services.lifecycle.errors import LifecycleError

logger = get_logger(__name__)


def error_response(
    status_code: int,
    kind: str,
    message: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    content = {
        "error": kind,
        "message": message,
        "request_id": get_request_id(),
    }
    if details is not None:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=content)


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    """
    Render a lifecycle error with its kind and mapped status code.

    Server-side failures are logged at error level, caller mistakes at info.
    The error context is only echoed back when debug is enabled.
    """
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Lifecycle error",
        method=request.method,
        path=request.url.path,
        error_kind=exc.kind,
        error=exc.message,
        **{f"ctx_{key}": value for key, value in exc.context.items()},
    )

    details = exc.context if get_settings().debug else None
    return error_response(exc.status_code, exc.kind, exc.message, details)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "request_validation_failed",
        "Request validation failed",
        details=exc.errors(),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected failure and answer without leaking internals."""
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(LifecycleError, lifecycle_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
