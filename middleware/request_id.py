"""
Request ID middleware for request correlation.

Every HTTP request gets an identifier, taken from the X-Request-ID
header when the caller supplies one. It is echoed on the response and
attached to every log line and error body produced while handling the
request.
"""

import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Request ID visible to logging from anywhere in the request's task
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that assigns a request ID to each request.

    The ID is stored in request.state for the exception handlers, in
    request_id_var for the JSON log formatter, and returned in the
    X-Request-ID response header.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            # Avoid leaking the ID into the next request on this context
            request_id_var.reset(token)


def get_request_id() -> str:
    """
    Get the current request ID.

    Returns:
        The current request ID, or empty string outside a request
    """
    return request_id_var.get()
