"""
Exception handlers for the telemetry endpoint.

Errors leave the API as {error_code, message, details, request_id}.
Unexpected exceptions are logged with their stack trace and answered
with a generic message so storage or cache internals never reach the
device.
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from errors.codes import ErrorCode
from errors.exceptions import AppException

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


class ErrorResponse(BaseModel):
    """Body of every error response."""
    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None
    request_id: str


def get_request_id(request: Request) -> str:
    """
    Return the ID assigned by RequestIDMiddleware, or a fresh UUID when
    the request never went through it.
    """
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _render(
    request_id: str,
    status_code: int,
    error_code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None
) -> JSONResponse:
    body = ErrorResponse(
        error_code=error_code.value,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers or None,
    )


async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    """Render a report outcome raised by the ingestion service."""
    request_id = get_request_id(request)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Request failed with {exc.error_code.value}: {exc.message}",
        extra={"extra_data": {
            "error_code": exc.error_code.value,
            "status_code": exc.status_code,
            "details": exc.details,
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
        }}
    )

    return _render(
        request_id,
        exc.status_code,
        exc.error_code,
        exc.message,
        details=exc.details,
        headers=exc.headers,
    )


async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """Log an unhandled exception and answer 500 without any of its text."""
    request_id = get_request_id(request)

    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
        extra={"extra_data": {
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        }},
        exc_info=exc,
    )

    return _render(request_id, 500, ErrorCode.INTERNAL_ERROR, UNEXPECTED_ERROR_MESSAGE)


def register_exception_handlers(app) -> None:
    """
    Register the handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(AppException, handle_app_exception)

    # Catches everything else, including storage driver errors
    app.add_exception_handler(Exception, handle_unexpected_exception)
