"""
Required-field validation for telemetry reports.

Only the minimum shape needed to resolve a device is checked here:
an identifier and both coordinates. Device-aware checks (staleness,
coordinates for distance) live in the ingestion policy.
"""

from typing import Any, List

from pydantic import ValidationError

from ingestion.models import FieldViolation, TelemetryReport, ValidationResult


def validate_required_fields(report: TelemetryReport) -> List[FieldViolation]:
    """
    Check that the report carries an identifier and both coordinates.

    A coordinate counts as present when it was supplied, whatever its
    value; 0.0 is a valid latitude or longitude.

    Args:
        report: The decoded report

    Returns:
        One violation per missing field, empty when the report passes
    """
    violations: List[FieldViolation] = []

    if not report.identificador:
        violations.append(FieldViolation("identificador", "identifier is required"))

    if report.latitud is None:
        violations.append(FieldViolation("latitud", "latitude is required"))

    if report.longitud is None:
        violations.append(FieldViolation("longitud", "longitude is required"))

    return violations


def check_report(report: TelemetryReport) -> ValidationResult:
    """Validate a decoded report and wrap the outcome in a ValidationResult."""
    return ValidationResult(report=report, violations=validate_required_fields(report))


def decode_report(payload: Any) -> ValidationResult:
    """
    Decode a raw payload into a report and validate it.

    Args:
        payload: Raw JSON bytes/str, or an already parsed mapping

    Returns:
        ValidationResult; undecodable payloads yield a single violation
        on the "json" field and no report
    """
    try:
        if isinstance(payload, (bytes, bytearray, str)):
            report = TelemetryReport.model_validate_json(payload)
        else:
            report = TelemetryReport.model_validate(payload)
    except ValidationError:
        return ValidationResult(
            report=None,
            violations=[FieldViolation("json", "invalid JSON format")],
        )

    return check_report(report)


def describe_violations(violations: List[FieldViolation], separator: str = ", ") -> str:
    """Render violations as 'field: message' pairs joined by separator."""
    return separator.join(str(v) for v in violations)

