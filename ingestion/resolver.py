"""
Cache-aside device resolution.

Devices are looked up in the cache first and in the durable store on a
miss, writing the store's row back to the cache. The cache only affects
latency: a cache fault of any kind is logged and treated as a miss.
"""

import asyncio
import logging
from typing import Optional

from cache.store import DeviceCache
from ingestion.models import Device
from storage.repository import DeviceRepository

logger = logging.getLogger(__name__)


class DeviceResolver:
    """
    Resolves device identifiers to Device rows.

    Attributes:
        repository: Durable store, the source of truth
        cache: Expendable device cache
        timeout: Deadline in seconds applied to each store/cache call
    """

    def __init__(self, repository: DeviceRepository, cache: DeviceCache, timeout: float = 5.0):
        self.repository = repository
        self.cache = cache
        self.timeout = timeout

    async def _from_cache(self, identifier: str) -> Optional[Device]:
        try:
            return await asyncio.wait_for(self.cache.get_device(identifier), self.timeout)
        except Exception as e:
            logger.warning(
                f"Cache read failed for device {identifier}, falling back to storage: {e}",
                extra={"extra_data": {"identificador": identifier, "error": str(e)}}
            )
            return None

    async def _write_back(self, device: Device) -> None:
        try:
            await asyncio.wait_for(self.cache.set_device(device), self.timeout)
        except Exception as e:
            logger.warning(
                f"Failed to cache device {device.identificador}: {e}",
                extra={"extra_data": {"identificador": device.identificador, "error": str(e)}}
            )

    async def resolve(self, identifier: str) -> Optional[Device]:
        """
        Resolve a device by identifier.

        Args:
            identifier: The device natural key

        Returns:
            The Device, or None if neither the cache nor the store has it

        Raises:
            RepositoryError: If the store cannot be read
            asyncio.TimeoutError: If the store read exceeds the deadline
        """
        device = await self._from_cache(identifier)
        if device is not None:
            logger.debug(f"Device {identifier} served from cache")
            return device

        device = await asyncio.wait_for(
            self.repository.get_device_by_identifier(identifier),
            self.timeout
        )
        if device is None:
            return None

        await self._write_back(device)
        return device
