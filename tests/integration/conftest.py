"""
Integration test configuration and fixtures.

The application is built with create_app() and driven through
TestClient, so the lifespan, middleware and exception handlers all run.
The relational store is either the in-memory mock or a file-backed
SQLite database; the device cache is always the in-memory mock.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from main import create_app
from middleware.rate_limiter import AdmissionController
from storage.sql_repository import SqlDeviceRepository
from storage.tables import devices
from telemetry.audit import AuditLogger


@pytest.fixture
def integration_settings(tmp_path) -> Settings:
    """Settings writing every log under tmp_path, with MQTT disabled."""
    return Settings(
        log_dir=str(tmp_path / "logs"),
        device_log_dir=str(tmp_path / "logs" / "devices"),
        mqtt_enabled=False,
        request_delay_ms=0,
        storage_timeout_seconds=2.0,
    )


@pytest.fixture
def audit_logger(integration_settings):
    writer = AuditLogger(
        integration_settings.log_dir,
        integration_settings.invalid_log_file,
        integration_settings.device_log_dir,
    )
    yield writer
    writer.close()


@pytest.fixture
def registered_device(mock_repository, sample_device):
    """Register sample_device as last seen one minute ago, in real time."""
    device = sample_device.model_copy(update={
        "ultima_conexion": datetime.now(timezone.utc) - timedelta(minutes=1),
    })
    mock_repository._devices[device.identificador] = device
    return device


@pytest.fixture
def make_client(integration_settings, mock_repository, mock_cache, audit_logger):
    """
    Factory for a TestClient over the mock stores.

    Keyword arguments override the repository, cache or admission
    controller passed to create_app().
    """
    def _make(**overrides) -> TestClient:
        app = create_app(
            integration_settings,
            repository=overrides.get("repository", mock_repository),
            cache=overrides.get("cache", mock_cache),
            admission=overrides.get("admission") or AdmissionController(rate=1000.0, burst=1000),
            audit=audit_logger,
        )
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    with make_client() as test_client:
        yield test_client


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    """
    URL of a SQLite database holding the telemetry schema and one device.

    The schema is created on a throwaway engine so the application opens
    its own engine on the TestClient event loop.
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}"

    async def prepare():
        repository = SqlDeviceRepository(url)
        await repository.connect()
        await repository.create_schema()
        async with repository.engine.begin() as conn:
            await conn.execute(devices.insert().values(
                idTelemetria=7,
                Identificador="DEV1",
                Nombre="Truck 7",
                UltimaConexion=datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=1),
                TiempoFueraLinea="01:00:00",
            ))
        await repository.close()

    asyncio.run(prepare())
    return url
