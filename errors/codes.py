"""
Error codes returned in the error_code field of a rejected report.

A report either succeeds or ends in exactly one of these outcomes.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Caller-visible failure outcomes of a telemetry report."""

    # Undecodable body or missing identificador/latitud/longitud
    VALIDATION_ERROR = "VALIDATION_ERROR"
    # Identifier not present in the device table
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    # Client exhausted its token bucket
    RATE_LIMITED = "RATE_LIMITED"
    # Device lookup or measurement insert failed
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_CODE_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
}


def get_default_status_code(error_code: ErrorCode) -> int:
    """HTTP status for an error code; anything unmapped is a 500."""
    return ERROR_CODE_STATUS_MAP.get(error_code, 500)
