"""
Device cache abstraction.

The cache holds an expendable projection of device rows so the hot path
can resolve a device without touching the relational store. Entries are
never invalidated on write by other components: every write refreshes a
time-to-live and an entry changed out-of-band in the store is only seen
once the cached copy expires. Callers must not rely on read-after-write
consistency between the store and the cache.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ingestion.models import Device


class CacheError(Exception):
    """Raised when the cache backend fails (connectivity, bad data)."""


class DeviceCache(ABC):
    """
    Abstract base class for device cache implementations.

    All methods are async to support non-blocking I/O with the
    backing store. A missing entry is a normal outcome (None), not an
    error.
    """

    @abstractmethod
    async def get_device(self, identifier: str) -> Optional[Device]:
        """
        Retrieve a cached device by identifier.

        Args:
            identifier: The device natural key.

        Returns:
            The cached Device, or None on a cache miss.

        Raises:
            CacheError: If the backend cannot be read.
        """
        pass

    @abstractmethod
    async def set_device(self, device: Device) -> None:
        """
        Store a device projection and refresh its time-to-live.

        Raises:
            CacheError: If the backend cannot be written.
        """
        pass

    @abstractmethod
    async def delete_device(self, identifier: str) -> None:
        """
        Remove a cached device. Deleting a missing entry is not an error.

        Raises:
            CacheError: If the backend cannot be written.
        """
        pass

    @abstractmethod
    async def update_device_location(
        self,
        identifier: str,
        latitude: float,
        longitude: float,
        timestamp: datetime
    ) -> None:
        """
        Update only the location and last-contact fields and refresh
        the time-to-live.

        Raises:
            CacheError: If the backend cannot be written.
        """
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """
        Check connectivity of the cache.

        Returns:
            True if the cache is reachable, False otherwise. Never raises.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the cache."""
        pass
