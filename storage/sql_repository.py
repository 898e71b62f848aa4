"""
SQLAlchemy implementation of the device repository.

Uses SQLAlchemy Core over an async engine. The default deployment is
MySQL through aiomysql; any async driver URL SQLAlchemy understands
works (SQLite through aiosqlite is used in tests).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import and_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ingestion.models import Device, ErrorRecord, Measurement
from storage.repository import DeviceNotFoundError, DeviceRepository, RepositoryError
from storage.tables import devices, errors, measurements, metadata

logger = logging.getLogger(__name__)


def _to_storage_time(value: datetime) -> datetime:
    # Columns are naive DATETIME holding UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_storage_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _format_duration(value: Any) -> str:
    """
    Render a stored max-offline duration as HH:MM:SS.

    MySQL TIME columns come back from the driver as timedelta; string
    columns are returned unchanged.
    """
    if value is None:
        return ""
    if isinstance(value, timedelta):
        total = int(value.total_seconds())
        hours, remainder = divmod(total, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return str(value)


class SqlDeviceRepository(DeviceRepository):
    """
    Device repository backed by a relational database.

    Attributes:
        database_url: SQLAlchemy async URL
        engine: AsyncEngine instance (initialized via connect())
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 25,
        max_overflow: int = 5,
        pool_recycle: int = 300,
        engine: Optional[AsyncEngine] = None
    ):
        self.database_url = database_url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_recycle = pool_recycle
        self.engine = engine

    async def connect(self) -> None:
        """
        Create the async engine and its connection pool.

        Pool sizing only applies to server databases; SQLite manages its
        own pool.
        """
        if self.engine is not None:
            return

        options = {"pool_pre_ping": True}
        if not self.database_url.startswith("sqlite"):
            options.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_recycle=self.pool_recycle,
            )

        self.engine = create_async_engine(self.database_url, **options)
        logger.info(
            "Database engine created",
            extra={"extra_data": {
                "dialect": self.engine.dialect.name,
                "pool_size": self.pool_size,
            }}
        )

    async def create_schema(self) -> None:
        """Create the telemetry tables if they do not exist."""
        engine = self._require_engine()
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("Database engine not initialized. Call connect() first.")
        return self.engine

    async def get_device_by_identifier(self, identifier: str) -> Optional[Device]:
        engine = self._require_engine()

        device_query = select(
            devices.c.idTelemetria,
            devices.c.Identificador,
            devices.c.Nombre,
            devices.c.UltimaConexion,
            devices.c.TiempoFueraLinea,
        ).where(devices.c.Identificador == identifier)

        try:
            async with engine.connect() as conn:
                row = (await conn.execute(device_query)).first()
                if row is None:
                    return None

                fix_query = (
                    select(measurements.c.Latitud, measurements.c.Longitud)
                    .where(and_(
                        measurements.c.idTelemetria == row.idTelemetria,
                        measurements.c.Latitud.is_not(None),
                        measurements.c.Longitud.is_not(None),
                    ))
                    .order_by(measurements.c.Fecha.desc(), measurements.c.idMedicion.desc())
                    .limit(1)
                )
                fix = (await conn.execute(fix_query)).first()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to query device {identifier}: {e}") from e

        return Device(
            id_telemetria=row.idTelemetria,
            identificador=row.Identificador,
            nombre=row.Nombre or "",
            ultima_conexion=_from_storage_time(row.UltimaConexion),
            tiempo_fuera_linea=_format_duration(row.TiempoFueraLinea),
            latitud=fix.Latitud if fix else None,
            longitud=fix.Longitud if fix else None,
        )

    async def update_device_connection(self, id_telemetria: int, timestamp: datetime) -> None:
        engine = self._require_engine()
        statement = (
            update(devices)
            .where(devices.c.idTelemetria == id_telemetria)
            .values(UltimaConexion=_to_storage_time(timestamp))
        )

        try:
            async with engine.begin() as conn:
                result = await conn.execute(statement)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to update connection of device {id_telemetria}: {e}") from e

        if result.rowcount == 0:
            raise DeviceNotFoundError(id_telemetria)

    async def insert_measurement(self, measurement: Measurement) -> Measurement:
        engine = self._require_engine()
        statement = measurements.insert().values(
            idTelemetria=measurement.id_telemetria,
            Fecha=_to_storage_time(measurement.fecha),
            Latitud=measurement.latitud,
            Longitud=measurement.longitud,
            Distancia=measurement.distancia,
            Sensor_1=measurement.sensor_1,
            Sensor_2=measurement.sensor_2,
            Sensor_3=measurement.sensor_3,
            Sensor_4=measurement.sensor_4,
            Sensor_5=measurement.sensor_5,
        )

        try:
            async with engine.begin() as conn:
                result = await conn.execute(statement)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to insert measurement: {e}") from e

        measurement.id_medicion = result.inserted_primary_key[0]
        return measurement

    async def insert_error(self, record: ErrorRecord) -> ErrorRecord:
        engine = self._require_engine()
        statement = errors.insert().values(
            idTelemetria=record.id_telemetria,
            Identificador=record.identificador,
            Fecha=_to_storage_time(record.fecha),
            descripcion=record.descripcion,
        )

        try:
            async with engine.begin() as conn:
                result = await conn.execute(statement)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to insert error record: {e}") from e

        record.id_error = result.inserted_primary_key[0]
        return record

    async def ping(self) -> bool:
        if self.engine is None:
            return False

        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False
