"""
Telemetry ingestion module.

This module provides the report model, field validation, the
offline/coordinate policy and distance computation. Device resolution
and the pipeline service live in ingestion.resolver and ingestion.service.
"""

from ingestion.models import (
    TelemetryReport,
    Device,
    Measurement,
    ErrorRecord,
    FieldViolation,
    ValidationResult,
    InvalidRequest,
    IngestionResult,
)
from ingestion.distance import calculate_distance, EARTH_RADIUS_KM
from ingestion.validation import validate_required_fields, check_report, decode_report
from ingestion.policy import check_offline, parse_offline_duration

__all__ = [
    "TelemetryReport",
    "Device",
    "Measurement",
    "ErrorRecord",
    "FieldViolation",
    "ValidationResult",
    "InvalidRequest",
    "IngestionResult",
    "calculate_distance",
    "EARTH_RADIUS_KM",
    "validate_required_fields",
    "check_report",
    "decode_report",
    "check_offline",
    "parse_offline_duration",
]
