"""
Telemetry ingestion pipeline.

This module provides the TelemetryIngestionService class that turns an
admitted, decoded report into a stored measurement: it resolves the
device, audits staleness and missing coordinates, computes the distance
from the previous fix, persists the measurement and then refreshes the
device's connection time, cached location and per-device log.

Only the measurement insert is mandatory. Every later step and every
audit row is best-effort: a failure there is logged and the report is
still acknowledged.
"""

import asyncio
import logging
import time
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from cache.store import DeviceCache
from errors.exceptions import device_not_found, internal_error, rate_limited, validation_error
from ingestion.distance import calculate_distance
from ingestion.models import (
    Device,
    ErrorRecord,
    IngestionResult,
    InvalidRequest,
    Measurement,
    TelemetryReport,
    ValidationResult,
)
from ingestion.policy import VIOLATION_SEPARATOR, collect_violations
from ingestion.resolver import DeviceResolver
from ingestion.validation import decode_report, describe_violations
from middleware.rate_limiter import AdmissionController
from storage.repository import DeviceRepository
from telemetry.audit import AuditLogger
from telemetry.service import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TelemetryIngestionService:
    """
    Service for ingesting telemetry reports from HTTP and MQTT.

    Callers run admit() before touching the payload, then ingest() with
    the raw payload. Outcomes that end a request are raised as
    AppException with the matching error code.

    Attributes:
        repository: Durable store for devices, measurements and errors
        cache: Device cache used for resolution and location refresh
        admission: Per-client admission controller
        audit: Writer for the invalid-request and per-device logs
        storage_timeout: Deadline in seconds for each store/cache call
    """

    def __init__(
        self,
        repository: DeviceRepository,
        cache: DeviceCache,
        admission: AdmissionController,
        audit: Optional[AuditLogger] = None,
        telemetry: Optional[TelemetryService] = None,
        storage_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize the TelemetryIngestionService.

        Args:
            repository: Durable store implementation
            cache: Device cache implementation
            admission: Admission controller shared by all ingress adapters
            audit: Optional audit log writer; audit files are skipped when None
            telemetry: Optional telemetry service (uses global if not provided)
            storage_timeout: Deadline in seconds for each store/cache call
            clock: Source of the current UTC time
        """
        self.repository = repository
        self.cache = cache
        self.admission = admission
        self.audit = audit
        self.telemetry = telemetry or get_telemetry_service()
        self.storage_timeout = storage_timeout
        self.resolver = DeviceResolver(repository, cache, timeout=storage_timeout)
        self._clock = clock
        self._logger = logging.getLogger(__name__)

    async def _with_deadline(self, operation: Awaitable[T]) -> T:
        return await asyncio.wait_for(operation, self.storage_timeout)

    async def admit(self, client_address: str) -> None:
        """
        Apply admission control for a client.

        Raises:
            AppException: RATE_LIMITED if the client is over its rate
        """
        if await self.admission.admit(client_address):
            return

        raise rate_limited(self.admission.retry_after(client_address))

    async def ingest(self, payload: Any, client_address: str) -> IngestionResult:
        """
        Decode, validate and process a raw report.

        Args:
            payload: Raw JSON body or already parsed mapping
            client_address: Client IP, or the MQTT identity

        Returns:
            IngestionResult for the stored measurement

        Raises:
            AppException: VALIDATION_ERROR, RESOURCE_NOT_FOUND or INTERNAL_ERROR
        """
        validation = decode_report(payload)
        if not validation.ok:
            await self.reject_invalid(validation, client_address)

        return await self.process(validation.report)

    async def reject_invalid(self, validation: ValidationResult, client_address: str) -> None:
        """
        Log and audit a report that failed field validation, then raise.

        Raises:
            AppException: Always VALIDATION_ERROR, listing the violations
        """
        now = self._clock()
        report = validation.report
        violations = validation.violations
        identifier = report.identificador if report and report.identificador else None

        self._logger.warning(
            f"Validation failed: {describe_violations(violations)}",
            extra={"extra_data": {
                "client": client_address,
                "identificador": identifier,
                "violations": [v.to_dict() for v in violations],
            }}
        )

        self._write_invalid_request(InvalidRequest(
            timestamp=now,
            client_address=client_address,
            violations=violations,
            identificador=identifier,
            latitud=report.latitud if report else None,
            longitud=report.longitud if report else None,
        ))

        await self._record_error(ErrorRecord(
            identificador=identifier,
            fecha=now,
            descripcion=describe_violations(violations, VIOLATION_SEPARATOR),
        ))

        raise validation_error(violations)

    def _write_invalid_request(self, request: InvalidRequest) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log_invalid_request(request)
        except Exception as e:
            self._logger.warning(f"Failed to write invalid request log: {e}")

    async def _record_error(self, record: ErrorRecord) -> None:
        try:
            await self._with_deadline(self.repository.insert_error(record))
        except Exception as e:
            self._logger.warning(
                f"Failed to record audit error: {e}",
                extra={"extra_data": {
                    "identificador": record.identificador,
                    "id_telemetria": record.id_telemetria,
                    "descripcion": record.descripcion,
                    "error": str(e),
                }}
            )

    async def _resolve(self, identifier: str) -> Device:
        try:
            device = await self.resolver.resolve(identifier)
        except Exception as e:
            self._logger.error(
                f"Failed to resolve device {identifier}: {e}",
                extra={"extra_data": {"identificador": identifier, "error": str(e)}}
            )
            raise internal_error() from e

        if device is not None:
            return device

        self._logger.warning(
            f"Report rejected: device '{identifier}' not found",
            extra={"extra_data": {"identificador": identifier}}
        )
        await self._record_error(ErrorRecord(
            identificador=identifier,
            fecha=self._clock(),
            descripcion=f"identifier does not exist in the database: {identifier}",
        ))
        raise device_not_found(identifier)

    async def _store_measurement(self, measurement: Measurement) -> Measurement:
        span = (
            self.telemetry.create_span(
                "ingestion.insert_measurement",
                {"device.id": measurement.id_telemetria}
            )
            if self.telemetry else nullcontext()
        )

        try:
            with span:
                # The insert completes even if the caller goes away
                return await asyncio.shield(self._with_deadline(
                    self.repository.insert_measurement(measurement)
                ))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                f"Failed to store measurement: {e}",
                extra={"extra_data": {
                    "id_telemetria": measurement.id_telemetria,
                    "error": str(e),
                }}
            )
            raise internal_error() from e

    async def _touch_device(self, device: Device, report: TelemetryReport, now: datetime) -> None:
        try:
            await self._with_deadline(
                self.repository.update_device_connection(device.id_telemetria, now)
            )
        except Exception as e:
            self._logger.warning(
                f"Failed to update connection time of device {device.identificador}: {e}",
                extra={"extra_data": {"identificador": device.identificador, "error": str(e)}}
            )

        if report.has_location:
            try:
                await self._with_deadline(self.cache.update_device_location(
                    device.identificador, report.latitud, report.longitud, now
                ))
            except Exception as e:
                self._logger.warning(
                    f"Failed to refresh cached location of device {device.identificador}: {e}",
                    extra={"extra_data": {"identificador": device.identificador, "error": str(e)}}
                )

        if self.audit is not None:
            try:
                self.audit.log_device_data(device.identificador, report)
            except Exception as e:
                self._logger.warning(
                    f"Failed to write device log for {device.identificador}: {e}",
                    extra={"extra_data": {"identificador": device.identificador, "error": str(e)}}
                )

    async def process(self, report: TelemetryReport) -> IngestionResult:
        """
        Run a validated report through the pipeline.

        Args:
            report: A report that passed field validation

        Returns:
            IngestionResult with the new measurement id and distance

        Raises:
            AppException: RESOURCE_NOT_FOUND if the device is unknown,
                INTERNAL_ERROR if it cannot be looked up or the measurement
                cannot be stored
        """
        start_time = time.perf_counter()
        identifier = report.identificador

        device = await self._resolve(identifier)
        now = self._clock()

        violations = collect_violations(device, report, now)
        if violations:
            await self._record_error(ErrorRecord(
                id_telemetria=device.id_telemetria,
                identificador=device.identificador,
                fecha=now,
                descripcion=VIOLATION_SEPARATOR.join(violations),
            ))

        distance = None
        if device.has_location and report.has_location:
            distance = calculate_distance(
                device.latitud, device.longitud, report.latitud, report.longitud
            )

        measurement = await self._store_measurement(Measurement(
            id_telemetria=device.id_telemetria,
            fecha=now,
            latitud=report.latitud,
            longitud=report.longitud,
            distancia=distance,
            **report.sensors(),
        ))

        await self._touch_device(device, report, now)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self.telemetry:
            self.telemetry.record_metric(
                "telemetry_ingest_duration_ms",
                duration_ms,
                tags={"identificador": identifier}
            )

        self._logger.info(
            f"Telemetry processed for device {identifier}",
            extra={"extra_data": {
                "identificador": identifier,
                "id_medicion": measurement.id_medicion,
                "distancia": distance,
                "violations": len(violations),
                "duration_ms": duration_ms,
            }}
        )

        return IngestionResult(
            identificador=identifier,
            id_medicion=measurement.id_medicion,
            distancia=distance,
            violations_recorded=bool(violations),
        )
