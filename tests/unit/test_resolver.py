"""
Unit tests for cache-aside device resolution.
"""

import asyncio

import pytest

from cache.store import CacheError
from ingestion.resolver import DeviceResolver
from storage.repository import RepositoryError


@pytest.fixture
def resolver(mock_repository, mock_cache):
    return DeviceResolver(mock_repository, mock_cache, timeout=1.0)


class TestDeviceResolver:
    """Tests for DeviceResolver.resolve."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_storage(self, resolver, mock_repository, mock_cache, sample_device):
        mock_cache._devices["DEV1"] = sample_device

        device = await resolver.resolve("DEV1")

        assert device == sample_device
        mock_repository.get_device_by_identifier.assert_not_called()

    @pytest.mark.asyncio
    async def test_miss_reads_storage_and_writes_back(
        self, resolver, mock_repository, mock_cache, sample_device
    ):
        mock_repository._devices["DEV1"] = sample_device

        first = await resolver.resolve("DEV1")
        second = await resolver.resolve("DEV1")

        assert first == sample_device
        assert second == sample_device
        assert mock_repository.get_device_by_identifier.await_count == 1
        mock_cache.set_device.assert_awaited_once()
        assert mock_cache._devices["DEV1"] == sample_device

    @pytest.mark.asyncio
    async def test_unknown_device_is_not_cached(self, resolver, mock_cache):
        assert await resolver.resolve("NOPE") is None

        mock_cache.set_device.assert_not_called()

    @pytest.mark.asyncio
    async def test_cache_read_error_falls_back_to_storage(
        self, resolver, mock_repository, mock_cache, sample_device
    ):
        mock_repository._devices["DEV1"] = sample_device
        mock_cache.get_device.side_effect = CacheError("redis down")

        device = await resolver.resolve("DEV1")

        assert device == sample_device
        mock_repository.get_device_by_identifier.assert_awaited_once_with("DEV1")

    @pytest.mark.asyncio
    async def test_cache_timeout_falls_back_to_storage(
        self, mock_repository, mock_cache, sample_device
    ):
        async def slow_get(identifier):
            await asyncio.sleep(1)

        mock_repository._devices["DEV1"] = sample_device
        mock_cache.get_device.side_effect = slow_get
        resolver = DeviceResolver(mock_repository, mock_cache, timeout=0.01)

        assert await resolver.resolve("DEV1") == sample_device

    @pytest.mark.asyncio
    async def test_write_back_failure_is_not_fatal(
        self, resolver, mock_repository, mock_cache, sample_device
    ):
        mock_repository._devices["DEV1"] = sample_device
        mock_cache.set_device.side_effect = CacheError("read-only replica")

        assert await resolver.resolve("DEV1") == sample_device

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, resolver, mock_repository):
        mock_repository.get_device_by_identifier.side_effect = RepositoryError("connection refused")

        with pytest.raises(RepositoryError):
            await resolver.resolve("DEV1")
