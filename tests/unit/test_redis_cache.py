"""
Unit tests for the Redis device cache.

The redis client is replaced by an AsyncMock, so no server is needed.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cache.redis_cache import RedisDeviceCache
from cache.store import CacheError


@pytest.fixture
def client():
    client = AsyncMock()
    client.hgetall.return_value = {}
    client.exists.return_value = 1
    client.ping.return_value = True
    return client


@pytest.fixture
def cache(client):
    return RedisDeviceCache("redis://localhost:6379/0", default_ttl=timedelta(hours=1), client=client)


CACHED_HASH = {
    "idTelemetria": "7",
    "nombre": "Truck 7",
    "ultimaConexion": "2024-01-15T10:29:00+00:00",
    "tiempoFueraLinea": "01:00:00",
    "latitud": "10.0",
    "longitud": "20.0",
}


class TestGetDevice:
    """Tests for RedisDeviceCache.get_device."""

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache, client):
        assert await cache.get_device("DEV1") is None
        client.hgetall.assert_awaited_once_with("device:DEV1")

    @pytest.mark.asyncio
    async def test_hit_builds_device(self, cache, client):
        client.hgetall.return_value = dict(CACHED_HASH)

        device = await cache.get_device("DEV1")

        assert device.id_telemetria == 7
        assert device.identificador == "DEV1"
        assert device.ultima_conexion == datetime(2024, 1, 15, 10, 29, tzinfo=timezone.utc)
        assert (device.latitud, device.longitud) == (10.0, 20.0)

    @pytest.mark.asyncio
    async def test_hit_without_location(self, cache, client):
        data = dict(CACHED_HASH)
        del data["latitud"]
        del data["longitud"]
        client.hgetall.return_value = data

        device = await cache.get_device("DEV1")

        assert device.latitud is None
        assert device.longitud is None

    @pytest.mark.asyncio
    async def test_incomplete_entry_is_a_miss(self, cache, client):
        client.hgetall.return_value = {"latitud": "1.0", "longitud": "2.0"}

        assert await cache.get_device("DEV1") is None

    @pytest.mark.asyncio
    async def test_backend_error_raises_cache_error(self, cache, client):
        client.hgetall.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(CacheError):
            await cache.get_device("DEV1")

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        cache = RedisDeviceCache("redis://localhost:6379/0")

        with pytest.raises(RuntimeError):
            await cache.get_device("DEV1")


class TestWrites:
    """Tests for set, update and delete."""

    @pytest.mark.asyncio
    async def test_set_device_writes_hash_with_ttl(self, cache, client, sample_device):
        await cache.set_device(sample_device)

        key, = client.hset.await_args.args
        mapping = client.hset.await_args.kwargs["mapping"]
        assert key == "device:DEV1"
        assert mapping["idTelemetria"] == "7"
        assert mapping["latitud"] == "10.0"
        assert mapping["tiempoFueraLinea"] == "01:00:00"
        client.expire.assert_awaited_once_with("device:DEV1", 3600)

    @pytest.mark.asyncio
    async def test_set_device_omits_unknown_location(self, cache, client, sample_device):
        await cache.set_device(sample_device.model_copy(update={"latitud": None, "longitud": None}))

        mapping = client.hset.await_args.kwargs["mapping"]
        assert "latitud" not in mapping
        assert "longitud" not in mapping

    @pytest.mark.asyncio
    async def test_update_location_refreshes_existing_entry(self, cache, client, fixed_now):
        await cache.update_device_location("DEV1", 0.0, -70.5, fixed_now)

        mapping = client.hset.await_args.kwargs["mapping"]
        assert mapping == {
            "latitud": "0.0",
            "longitud": "-70.5",
            "ultimaConexion": fixed_now.isoformat(),
        }
        client.expire.assert_awaited_once_with("device:DEV1", 3600)

    @pytest.mark.asyncio
    async def test_update_location_skips_missing_entry(self, cache, client, fixed_now):
        client.exists.return_value = 0

        await cache.update_device_location("DEV1", 1.0, 2.0, fixed_now)

        client.hset.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_error_raises_cache_error(self, cache, client, sample_device):
        client.hset.side_effect = RedisConnectionError("broken pipe")

        with pytest.raises(CacheError):
            await cache.set_device(sample_device)

    @pytest.mark.asyncio
    async def test_delete_device(self, cache, client):
        await cache.delete_device("DEV1")

        client.delete.assert_awaited_once_with("device:DEV1")


class TestPing:
    """Tests for RedisDeviceCache.ping."""

    @pytest.mark.asyncio
    async def test_ping_ok(self, cache):
        assert await cache.ping() is True

    @pytest.mark.asyncio
    async def test_ping_failure_returns_false(self, cache, client):
        client.ping.side_effect = RedisConnectionError("down")

        assert await cache.ping() is False

    @pytest.mark.asyncio
    async def test_ping_without_client(self):
        assert await RedisDeviceCache("redis://localhost:6379/0").ping() is False

    @pytest.mark.asyncio
    async def test_close_releases_client(self, cache, client):
        await cache.close()

        client.aclose.assert_awaited_once()
        assert cache.client is None
