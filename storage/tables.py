"""
Table definitions for the telemetry store.

Table and column names match the existing MySQL schema the devices'
back office already reads from.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)

metadata = MetaData()

# SQLite only autoincrements INTEGER primary keys
_PrimaryKey = BigInteger().with_variant(Integer, "sqlite")

devices = Table(
    "equipos_telemetria",
    metadata,
    Column("idTelemetria", _PrimaryKey, primary_key=True, autoincrement=True),
    Column("Identificador", String(120), nullable=False, unique=True),
    Column("Nombre", String(120), nullable=False, server_default=""),
    Column("UltimaConexion", DateTime, nullable=False),
    Column("TiempoFueraLinea", String(16), nullable=False, server_default="00:00:00"),
)

measurements = Table(
    "equipos_telemetria_datos",
    metadata,
    Column("idMedicion", _PrimaryKey, primary_key=True, autoincrement=True),
    Column("idTelemetria", _PrimaryKey, ForeignKey("equipos_telemetria.idTelemetria"), nullable=False),
    Column("Fecha", DateTime, nullable=False),
    Column("Latitud", Float, nullable=True),
    Column("Longitud", Float, nullable=True),
    Column("Distancia", Float, nullable=True),
    Column("Sensor_1", Float, nullable=True),
    Column("Sensor_2", Float, nullable=True),
    Column("Sensor_3", Float, nullable=True),
    Column("Sensor_4", Float, nullable=True),
    Column("Sensor_5", Float, nullable=True),
)

Index("idx_datos_telemetria_fecha", measurements.c.idTelemetria, measurements.c.Fecha)

errors = Table(
    "equipos_telemetria_errores",
    metadata,
    Column("idError", _PrimaryKey, primary_key=True, autoincrement=True),
    Column("idTelemetria", _PrimaryKey, nullable=True),
    Column("Identificador", String(120), nullable=True),
    Column("Fecha", DateTime, nullable=False),
    Column("descripcion", String(2000), nullable=False),
)
