"""
Middleware components for the telemetry endpoint.

This module contains the HTTP middleware for request correlation and
access logging, and the admission controller that throttles clients.
"""

from middleware.request_id import RequestIDMiddleware, request_id_var, REQUEST_ID_HEADER
from middleware.access_log import AccessLogMiddleware
from middleware.rate_limiter import (
    AdmissionController,
    BucketStore,
    TokenBucket,
    MQTT_CLIENT_IDENTITY,
    create_admission_controller,
    get_client_ip,
)

__all__ = [
    "RequestIDMiddleware",
    "request_id_var",
    "REQUEST_ID_HEADER",
    "AccessLogMiddleware",
    "AdmissionController",
    "BucketStore",
    "TokenBucket",
    "MQTT_CLIENT_IDENTITY",
    "create_admission_controller",
    "get_client_ip",
]
