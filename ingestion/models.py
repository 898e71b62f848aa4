"""
Data models for telemetry ingestion.

This module defines the inbound report payload, the device projection
shared by the relational store and the cache, and the append-only
measurement and error records.

Coordinates, sensors and distance are Optional throughout: None means
the value was not supplied, while 0.0 is a valid reading.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


SENSOR_FIELDS = ("sensor_1", "sensor_2", "sensor_3", "sensor_4", "sensor_5")


class TelemetryReport(BaseModel):
    """
    Pydantic model for a telemetry report sent by a device.

    Field names follow the wire format used by the devices. Required-ness
    of identifier and coordinates is checked by the field validator rather
    than by the model, so a report missing them can still be decoded,
    logged and audited.

    Attributes:
        identificador: Natural key of the reporting device
        latitud: GPS latitude, None when not supplied
        longitud: GPS longitude, None when not supplied
        sensor_1..sensor_5: Optional sensor readings
    """

    model_config = ConfigDict(extra="ignore")

    identificador: Optional[str] = None
    latitud: Optional[float] = None
    longitud: Optional[float] = None
    sensor_1: Optional[float] = None
    sensor_2: Optional[float] = None
    sensor_3: Optional[float] = None
    sensor_4: Optional[float] = None
    sensor_5: Optional[float] = None

    @property
    def has_location(self) -> bool:
        return self.latitud is not None and self.longitud is not None

    def sensors(self) -> dict[str, float]:
        """Return the sensor readings that were supplied, keyed by field name."""
        values = {}
        for name in SENSOR_FIELDS:
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        return values


class Device(BaseModel):
    """
    A telemetry device as stored in the relational store and the cache.

    Attributes:
        id_telemetria: Numeric surrogate key
        identificador: Unique natural key
        nombre: Display name
        ultima_conexion: Timestamp of the last accepted report
        tiempo_fuera_linea: Maximum offline duration as HH:MM:SS
        latitud: Last known latitude, None if the device never reported a fix
        longitud: Last known longitude, None if the device never reported a fix
    """

    id_telemetria: int
    identificador: str
    nombre: str = ""
    ultima_conexion: datetime
    tiempo_fuera_linea: str = ""
    latitud: Optional[float] = None
    longitud: Optional[float] = None

    @property
    def has_location(self) -> bool:
        return self.latitud is not None and self.longitud is not None


class Measurement(BaseModel):
    """
    One accepted telemetry sample. id_medicion is assigned on insert.
    """

    id_medicion: Optional[int] = None
    id_telemetria: int
    fecha: datetime
    latitud: Optional[float] = None
    longitud: Optional[float] = None
    distancia: Optional[float] = None
    sensor_1: Optional[float] = None
    sensor_2: Optional[float] = None
    sensor_3: Optional[float] = None
    sensor_4: Optional[float] = None
    sensor_5: Optional[float] = None


class ErrorRecord(BaseModel):
    """
    Audit row describing why a report was rejected or flagged.

    id_telemetria is None when the device could not be resolved;
    identificador is None when the report did not carry one.
    """

    id_error: Optional[int] = None
    id_telemetria: Optional[int] = None
    identificador: Optional[str] = None
    fecha: datetime
    descripcion: str


@dataclass(frozen=True)
class FieldViolation:
    """A missing or malformed report field."""
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass
class ValidationResult:
    """
    Outcome of required-field validation.

    Either ok with the report, or not ok with at least one violation.
    """
    report: Optional[TelemetryReport]
    violations: List[FieldViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


@dataclass
class InvalidRequest:
    """A report rejected before device resolution, as written to the invalid-request log."""
    timestamp: datetime
    client_address: str
    violations: List[FieldViolation]
    identificador: Optional[str] = None
    latitud: Optional[float] = None
    longitud: Optional[float] = None


class IngestionResult(BaseModel):
    """
    Result of a successfully ingested report.

    Attributes:
        identificador: The device the measurement was recorded for
        id_medicion: Generated id of the stored measurement
        distancia: Distance from the previous fix in meters, if computable
        violations_recorded: Whether staleness or coordinate issues were audited
    """

    identificador: str
    id_medicion: Optional[int] = None
    distancia: Optional[float] = None
    violations_recorded: bool = False
