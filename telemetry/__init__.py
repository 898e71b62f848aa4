"""
Telemetry module for structured logging and observability.

This module provides:
- JSONFormatter for structured JSON log output
- configure_logging and configure_tracing for process-wide setup
- TelemetryService, the shared handle for spans and metric lines
- AuditLogger for the invalid-request and per-device audit logs
"""

from telemetry.service import (
    JSONFormatter,
    TelemetryService,
    configure_logging,
    configure_tracing,
    get_telemetry_service,
    initialize_telemetry,
    set_request_id,
    get_request_id,
)
from telemetry.audit import AuditLogger

__all__ = [
    "JSONFormatter",
    "TelemetryService",
    "configure_logging",
    "configure_tracing",
    "get_telemetry_service",
    "initialize_telemetry",
    "set_request_id",
    "get_request_id",
    "AuditLogger",
]
