"""
Exceptions that end the processing of a telemetry report.

Each outcome a caller can see besides success has a factory here; the
FastAPI handlers render them, while the MQTT handler only logs them.
"""

from typing import Any, Iterable, Optional

from errors.codes import ErrorCode, get_default_status_code
from ingestion.models import FieldViolation


class AppException(Exception):
    """
    A report outcome with an error code, a message for the device and an
    optional details payload.

    Attributes:
        error_code: Category of the outcome
        message: Human-readable message returned to the caller
        status_code: HTTP status, derived from the error code unless given
        details: Extra context such as the violated fields
        headers: Extra HTTP response headers
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code or get_default_status_code(error_code)
        self.details = details
        self.headers = headers or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"AppException(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, status_code={self.status_code})"
        )


def validation_error(violations: Iterable[FieldViolation]) -> AppException:
    """
    Reject a report whose required fields are missing or undecodable.

    The field list is returned to the caller under details["fields"].
    """
    violations = list(violations)
    undecodable = any(v.field == "json" for v in violations)
    return AppException(
        error_code=ErrorCode.VALIDATION_ERROR,
        message="Invalid JSON format" if undecodable else "Validation failed",
        details={"fields": [v.to_dict() for v in violations]}
    )


def device_not_found(identifier: str) -> AppException:
    return AppException(
        error_code=ErrorCode.RESOURCE_NOT_FOUND,
        message=f"Device '{identifier}' not found",
        details={"identificador": identifier}
    )


def rate_limited(retry_after_seconds: int = 1) -> AppException:
    """Throttle a client; Retry-After tells it when a token is available."""
    return AppException(
        error_code=ErrorCode.RATE_LIMITED,
        message="Too many requests. Please slow down.",
        details={"retry_after_seconds": retry_after_seconds},
        headers={"Retry-After": str(retry_after_seconds)}
    )


def internal_error(message: str = "Failed to process telemetry data") -> AppException:
    return AppException(error_code=ErrorCode.INTERNAL_ERROR, message=message)
