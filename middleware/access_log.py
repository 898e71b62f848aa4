"""
Access logging middleware.

Writes one structured log line per HTTP request once the response is
ready: method, path, status code, duration and client address.
"""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from middleware.rate_limiter import get_client_ip

logger = logging.getLogger("telemetry.access")


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log every request with its outcome and latency."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={"extra_data": {
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 3),
                "client": get_client_ip(request),
            }}
        )
        return response
