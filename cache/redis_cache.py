"""
Redis-based device cache implementation.

Each device is stored as a hash under "device:<identifier>" with an
expiry that is refreshed on every write.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from redis.exceptions import RedisError

from cache.store import CacheError, DeviceCache
from ingestion.models import Device

logger = logging.getLogger(__name__)

# Default TTL of cached device entries
DEFAULT_CACHE_TTL = timedelta(hours=24)

KEY_PREFIX = "device:"


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


class RedisDeviceCache(DeviceCache):
    """
    Redis-backed device cache.

    Attributes:
        redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
        default_ttl: Time-to-live applied on every write
        max_connections: Size of the client connection pool
        client: Redis async client instance (initialized via connect())
    """

    def __init__(
        self,
        redis_url: str,
        default_ttl: timedelta = DEFAULT_CACHE_TTL,
        max_connections: int = 10,
        client=None
    ):
        """
        Initialize the Redis device cache.

        Args:
            redis_url: Redis connection URL
            default_ttl: TTL for cached devices. Defaults to 24 hours.
            max_connections: Connection pool size
            client: Optional pre-built client, used instead of connect()
        """
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.max_connections = max_connections
        self.client = client

    async def connect(self) -> None:
        """
        Create the async Redis client from the configured URL.

        The client connects lazily; use ping() to verify
        connectivity.
        """
        import redis.asyncio as redis
        self.client = redis.from_url(
            self.redis_url,
            decode_responses=True,
            max_connections=self.max_connections,
        )

    async def close(self) -> None:
        """
        Close the Redis connection.

        Should be called during application shutdown to cleanly
        release resources.
        """
        if self.client:
            await self.client.aclose()
            self.client = None

    def _get_key(self, identifier: str) -> str:
        return f"{KEY_PREFIX}{identifier}"

    def _require_client(self):
        if not self.client:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self.client

    @property
    def _ttl_seconds(self) -> int:
        return int(self.default_ttl.total_seconds())

    async def get_device(self, identifier: str) -> Optional[Device]:
        """
        Retrieve a cached device.

        A hash that lacks the device id or last-contact time is treated
        as a miss, since it cannot stand in for the stored row.
        """
        client = self._require_client()
        key = self._get_key(identifier)

        try:
            data = await client.hgetall(key)
        except RedisError as e:
            raise CacheError(f"Failed to read device {identifier} from cache: {e}") from e

        if not data:
            return None

        try:
            return Device(
                id_telemetria=int(data["idTelemetria"]),
                identificador=identifier,
                nombre=data.get("nombre", ""),
                ultima_conexion=datetime.fromisoformat(data["ultimaConexion"]),
                tiempo_fuera_linea=data.get("tiempoFueraLinea", ""),
                latitud=_parse_float(data.get("latitud")),
                longitud=_parse_float(data.get("longitud")),
            )
        except (KeyError, ValueError) as e:
            logger.warning(
                f"Ignoring incomplete cache entry for device {identifier}: {e}",
                extra={"extra_data": {"identificador": identifier}}
            )
            return None

    async def set_device(self, device: Device) -> None:
        client = self._require_client()
        key = self._get_key(device.identificador)

        data = {
            "idTelemetria": str(device.id_telemetria),
            "nombre": device.nombre,
            "ultimaConexion": device.ultima_conexion.isoformat(),
            "tiempoFueraLinea": device.tiempo_fuera_linea,
        }
        if device.latitud is not None:
            data["latitud"] = repr(device.latitud)
        if device.longitud is not None:
            data["longitud"] = repr(device.longitud)

        try:
            await client.hset(key, mapping=data)
            await client.expire(key, self._ttl_seconds)
        except RedisError as e:
            raise CacheError(f"Failed to cache device {device.identificador}: {e}") from e

    async def delete_device(self, identifier: str) -> None:
        """
        Delete a cached device.

        This operation is idempotent - deleting a non-existent
        entry does not raise an error.
        """
        client = self._require_client()
        try:
            await client.delete(self._get_key(identifier))
        except RedisError as e:
            raise CacheError(f"Failed to delete device {identifier} from cache: {e}") from e

    async def update_device_location(
        self,
        identifier: str,
        latitude: float,
        longitude: float,
        timestamp: datetime
    ) -> None:
        """
        Update location and last contact of a cached device.

        Entries that already expired are left absent; the next
        resolution repopulates them from the store.
        """
        client = self._require_client()
        key = self._get_key(identifier)

        try:
            if not await client.exists(key):
                logger.debug(
                    f"Device {identifier} not cached, skipping location update",
                    extra={"extra_data": {"identificador": identifier}}
                )
                return

            await client.hset(key, mapping={
                "latitud": repr(latitude),
                "longitud": repr(longitude),
                "ultimaConexion": timestamp.isoformat(),
            })
            await client.expire(key, self._ttl_seconds)
        except RedisError as e:
            raise CacheError(f"Failed to update cached location of {identifier}: {e}") from e

    async def ping(self) -> bool:
        """
        Check connectivity and health of Redis.

        Returns:
            True if Redis is healthy and accessible, False otherwise.
        """
        if not self.client:
            return False

        try:
            result = await self.client.ping()
            return result is True
        except Exception:
            return False
