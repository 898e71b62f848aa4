"""
Shared pytest fixtures and configuration for all tests.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Dict

import pytest
from unittest.mock import MagicMock, AsyncMock

from hypothesis import settings, Verbosity, Phase

from ingestion.models import Device, ErrorRecord, Measurement
from middleware.rate_limiter import AdmissionController

# Default profile: balanced for local development
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
    print_blob=True,
)

# CI profile: more thorough and reproducible
settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,
)

# Debug profile: minimal examples, no shrinking
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],
)

settings.register_profile(
    "fast",
    max_examples=20,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now() -> datetime:
    """The arrival time used by pipeline tests."""
    return FIXED_NOW


@pytest.fixture
def sample_device() -> Device:
    """A device with a prior fix that last reported one minute ago."""
    return Device(
        id_telemetria=7,
        identificador="DEV1",
        nombre="Truck 7",
        ultima_conexion=FIXED_NOW - timedelta(minutes=1),
        tiempo_fuera_linea="01:00:00",
        latitud=10.0,
        longitud=20.0,
    )


@pytest.fixture
def sample_report() -> dict:
    """Sample telemetry payload for testing."""
    return {
        "identificador": "DEV1",
        "latitud": 10.0,
        "longitud": 20.0,
        "sensor_1": 21.5,
        "sensor_3": 0.0,
    }


@pytest.fixture
def mock_repository() -> MagicMock:
    """
    In-memory repository mock.

    Devices are looked up in mock._devices; inserted measurements and
    errors are collected in mock._measurements and mock._errors.
    """
    mock = MagicMock()
    mock._devices: Dict[str, Device] = {}
    mock._measurements = []
    mock._errors = []

    async def get_device(identifier):
        device = mock._devices.get(identifier)
        return device.model_copy() if device else None

    async def insert_measurement(measurement: Measurement):
        measurement.id_medicion = len(mock._measurements) + 1
        mock._measurements.append(measurement)
        return measurement

    async def insert_error(record: ErrorRecord):
        record.id_error = len(mock._errors) + 1
        mock._errors.append(record)
        return record

    mock.connect = AsyncMock(return_value=None)
    mock.close = AsyncMock(return_value=None)
    mock.ping = AsyncMock(return_value=True)
    mock.get_device_by_identifier = AsyncMock(side_effect=get_device)
    mock.update_device_connection = AsyncMock(return_value=None)
    mock.insert_measurement = AsyncMock(side_effect=insert_measurement)
    mock.insert_error = AsyncMock(side_effect=insert_error)
    return mock


@pytest.fixture
def mock_cache() -> MagicMock:
    """
    In-memory device cache mock backed by mock._devices.
    """
    mock = MagicMock()
    mock._devices: Dict[str, Device] = {}

    async def get_device(identifier):
        device = mock._devices.get(identifier)
        return device.model_copy() if device else None

    async def set_device(device: Device):
        mock._devices[device.identificador] = device.model_copy()

    async def delete_device(identifier):
        mock._devices.pop(identifier, None)

    async def update_device_location(identifier, latitude, longitude, timestamp):
        device = mock._devices.get(identifier)
        if device is not None:
            mock._devices[identifier] = device.model_copy(update={
                "latitud": latitude,
                "longitud": longitude,
                "ultima_conexion": timestamp,
            })

    mock.connect = AsyncMock(return_value=None)
    mock.close = AsyncMock(return_value=None)
    mock.ping = AsyncMock(return_value=True)
    mock.get_device = AsyncMock(side_effect=get_device)
    mock.set_device = AsyncMock(side_effect=set_device)
    mock.delete_device = AsyncMock(side_effect=delete_device)
    mock.update_device_location = AsyncMock(side_effect=update_device_location)
    return mock


@pytest.fixture
def admission() -> AdmissionController:
    """A permissive admission controller with no pacing delay."""
    return AdmissionController(rate=1000.0, burst=1000, request_delay=0.0)


@pytest.fixture
def sample_error_response() -> dict:
    """Sample error response structure for testing."""
    return {
        "error_code": "VALIDATION_ERROR",
        "message": "Validation failed",
        "details": {"fields": [{"field": "latitud", "message": "latitude is required"}]},
        "request_id": "req_test123"
    }
