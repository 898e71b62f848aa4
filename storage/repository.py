"""
Durable store abstraction for devices, measurements and audit errors.

The store is the source of truth for device state; any cached copy is
derived from it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ingestion.models import Device, ErrorRecord, Measurement


class RepositoryError(Exception):
    """Raised when the durable store cannot complete an operation."""


class DeviceNotFoundError(RepositoryError):
    """Raised when an update targets a device id with no row."""

    def __init__(self, id_telemetria: int):
        self.id_telemetria = id_telemetria
        super().__init__(f"device not found: {id_telemetria}")


class DeviceRepository(ABC):
    """
    Abstract base class for the durable telemetry store.

    All methods are async. Lookups return None for a missing row; every
    other failure is raised as RepositoryError.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection pool."""
        pass

    @abstractmethod
    async def get_device_by_identifier(self, identifier: str) -> Optional[Device]:
        """
        Fetch a device by its natural key.

        The returned device carries the coordinates of its most recent
        measurement that has a fix, if any.

        Args:
            identifier: The device natural key.

        Returns:
            The Device, or None if no row matches.

        Raises:
            RepositoryError: If the store cannot be queried.
        """
        pass

    @abstractmethod
    async def update_device_connection(self, id_telemetria: int, timestamp: datetime) -> None:
        """
        Set the last-connection timestamp of a device.

        Raises:
            DeviceNotFoundError: If no row was updated.
            RepositoryError: If the store cannot be written.
        """
        pass

    @abstractmethod
    async def insert_measurement(self, measurement: Measurement) -> Measurement:
        """Insert a measurement and assign its generated id_medicion."""
        pass

    @abstractmethod
    async def insert_error(self, record: ErrorRecord) -> ErrorRecord:
        """Insert an audit error and assign its generated id_error."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """
        Check connectivity of the store.

        Returns:
            True if the store answers, False otherwise. Never raises.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Dispose of the connection pool."""
        pass
