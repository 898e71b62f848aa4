"""
Plain-text audit logs kept next to the application log.

- invalid_requests.log: one line per report rejected for missing fields
- devices/<identifier>.log: one line per accepted report of that device

Both use dedicated loggers that do not propagate to the root logger, so
their lines never end up in the JSON application log.
"""

import logging
import os
import re
import threading
from typing import Dict, Optional

from ingestion.models import InvalidRequest, TelemetryReport, SENSOR_FIELDS

AUDIT_FORMAT = "%(asctime)s %(message)s"
AUDIT_DATEFMT = "%Y/%m/%d %H:%M:%S"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _format_coordinate(value: Optional[float], missing: str) -> str:
    return missing if value is None else f"{value:.6f}"


def format_invalid_request(request: InvalidRequest) -> str:
    parts = [
        f"IP: {request.client_address}",
        f"Timestamp: {request.timestamp.isoformat()}",
        f"Identificador: {request.identificador or 'MISSING'}",
        f"Latitud: {_format_coordinate(request.latitud, 'MISSING')}",
        f"Longitud: {_format_coordinate(request.longitud, 'MISSING')}",
    ]
    line = ", ".join(parts)
    if request.violations:
        line += ", Errors: [" + ", ".join(str(v) for v in request.violations) + "]"
    return line


def format_device_entry(identifier: str, report: TelemetryReport) -> str:
    line = (
        f"Identificador: {identifier}, "
        f"Latitud: {_format_coordinate(report.latitud, 'null')}, "
        f"Longitud: {_format_coordinate(report.longitud, 'null')}"
    )
    for name in SENSOR_FIELDS:
        value = getattr(report, name)
        if value is not None:
            line += f", {name.capitalize()}: {value:.6f}"
    return line


def device_log_filename(identifier: str) -> str:
    """File name for a device log; path separators and the like become '_'."""
    return f"{_UNSAFE_FILENAME_CHARS.sub('_', identifier)}.log"


class AuditLogger:
    """
    Writer for the invalid-request log and the per-device logs.

    Device loggers are created on first use and cached by log file name;
    creation is guarded by a lock so concurrent first reports from the
    same device share one file handler.
    """

    def __init__(self, log_dir: str, invalid_log_file: str, device_log_dir: str):
        self.log_dir = log_dir
        self.device_log_dir = device_log_dir
        os.makedirs(log_dir, exist_ok=True)
        os.makedirs(device_log_dir, exist_ok=True)

        self._formatter = logging.Formatter(AUDIT_FORMAT, datefmt=AUDIT_DATEFMT)
        self._device_loggers: Dict[str, logging.Logger] = {}
        self._lock = threading.Lock()

        self._invalid_logger = self._build_logger(
            "telemetry.audit.invalid",
            os.path.join(log_dir, invalid_log_file)
        )

    def _build_logger(self, name: str, path: str) -> logging.Logger:
        audit_logger = logging.getLogger(name)
        audit_logger.setLevel(logging.INFO)
        audit_logger.propagate = False
        for handler in list(audit_logger.handlers):
            audit_logger.removeHandler(handler)
            handler.close()

        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(self._formatter)
        audit_logger.addHandler(handler)
        return audit_logger

    def _get_device_logger(self, identifier: str) -> logging.Logger:
        # Identifiers that sanitize to the same file share one logger
        filename = device_log_filename(identifier)
        with self._lock:
            device_logger = self._device_loggers.get(filename)
            if device_logger is None:
                device_logger = self._build_logger(
                    f"telemetry.audit.devices.{os.path.splitext(filename)[0]}",
                    os.path.join(self.device_log_dir, filename)
                )
                self._device_loggers[filename] = device_logger
            return device_logger

    def log_invalid_request(self, request: InvalidRequest) -> None:
        self._invalid_logger.info(format_invalid_request(request))

    def log_device_data(self, identifier: str, report: TelemetryReport) -> None:
        """
        Append a report to the device's log.

        Raises:
            OSError: If the device log file cannot be opened
        """
        self._get_device_logger(identifier).info(format_device_entry(identifier, report))

    def close(self) -> None:
        """Close every file handler owned by this writer."""
        with self._lock:
            loggers = [self._invalid_logger, *self._device_loggers.values()]
            self._device_loggers.clear()
        for audit_logger in loggers:
            for handler in list(audit_logger.handlers):
                audit_logger.removeHandler(handler)
                handler.close()
