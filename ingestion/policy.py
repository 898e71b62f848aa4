"""
Device-aware checks run after a device has been resolved.

These checks never reject a report. Their findings are joined into a
single audit ErrorRecord and the measurement is still stored.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ingestion.models import Device, TelemetryReport

logger = logging.getLogger(__name__)

VIOLATION_SEPARATOR = "; "


def parse_offline_duration(value: str) -> timedelta:
    """
    Parse an HH:MM:SS duration. Hours may exceed 23.

    Raises:
        ValueError: If the value does not have three integer parts
    """
    parts = (value or "").strip().split(":")
    if len(parts) != 3:
        raise ValueError(f"invalid duration format: {value!r}")

    hours, minutes, seconds = (int(part) for part in parts)
    if minutes < 0 or seconds < 0 or hours < 0:
        raise ValueError(f"negative duration component: {value!r}")

    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def _as_aware(value: datetime) -> datetime:
    # Naive timestamps from the store are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_elapsed(elapsed: timedelta) -> str:
    total = int(elapsed.total_seconds())
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h{minutes:02d}m{seconds:02d}s"


def check_offline(device: Device, now: datetime) -> Optional[str]:
    """
    Check whether a device stayed silent longer than it is allowed to.

    A maximum that cannot be parsed is logged and not enforced.

    Args:
        device: The resolved device
        now: Arrival time of the current report

    Returns:
        A description of the violation, or None
    """
    try:
        max_offline = parse_offline_duration(device.tiempo_fuera_linea)
    except ValueError as e:
        logger.warning(
            f"Cannot parse max offline duration for device {device.identificador}: {e}",
            extra={"extra_data": {
                "identificador": device.identificador,
                "tiempo_fuera_linea": device.tiempo_fuera_linea,
            }}
        )
        return None

    last_contact = _as_aware(device.ultima_conexion)
    elapsed = _as_aware(now) - last_contact

    if elapsed <= max_offline:
        return None

    description = (
        f"Offline time exceeded: last connection {last_contact.isoformat()}, "
        f"maximum allowed {device.tiempo_fuera_linea}, "
        f"elapsed {format_elapsed(elapsed)}"
    )
    logger.warning(
        f"Device {device.identificador} exceeded its offline time",
        extra={"extra_data": {
            "identificador": device.identificador,
            "last_connection": last_contact.isoformat(),
            "max_offline": device.tiempo_fuera_linea,
            "elapsed_seconds": elapsed.total_seconds(),
        }}
    )
    return description


def check_coordinates(report: TelemetryReport) -> List[str]:
    """List the coordinates missing from a report, as audit descriptions."""
    missing = []
    if report.latitud is None:
        missing.append("Missing data: latitud")
    if report.longitud is None:
        missing.append("Missing data: longitud")
    return missing


def collect_violations(device: Device, report: TelemetryReport, now: datetime) -> List[str]:
    """Run the staleness and coordinate checks for a resolved device."""
    violations = []
    offline = check_offline(device, now)
    if offline:
        violations.append(offline)
    violations.extend(check_coordinates(report))
    return violations
