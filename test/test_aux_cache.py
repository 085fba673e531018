#!/usr/bin/env python3
"""Unit tests for the bounded auxiliary caches."""

from unittest.mock import AsyncMock

import pytest

from transfer_monitor.utils.aux_cache import AuxCache, BoundedCache, format_timestamp


class TestBoundedCache:
    """Tests for FIFO eviction."""

    def test_size_never_exceeds_bound(self):
        cache: BoundedCache[int, str] = BoundedCache(max_size=100)
        for block in range(250):
            cache.put(block, f"ts-{block}")
            assert len(cache) <= 100

    def test_101st_entry_evicts_first_inserted(self):
        cache: BoundedCache[int, str] = BoundedCache(max_size=100)
        for block in range(100):
            cache.put(block, f"ts-{block}")

        cache.put(100, "ts-100")

        assert len(cache) == 100
        assert 0 not in cache
        assert 1 in cache
        assert 100 in cache

    def test_lookup_does_not_refresh_position(self):
        cache: BoundedCache[str, int] = BoundedCache(max_size=2)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1

        cache.put("c", 3)

        assert "a" not in cache
        assert cache.keys() == ["b", "c"]

    def test_cached_value_not_overwritten(self):
        cache: BoundedCache[int, str] = BoundedCache(max_size=10)
        cache.put(1, "first")
        assert cache.put(1, "second") == "first"
        assert cache.get(1) == "first"

    def test_hit_and_miss_counters(self):
        cache: BoundedCache[int, str] = BoundedCache(max_size=10)
        cache.get(1)
        cache.put(1, "x")
        cache.get(1)
        assert (cache.hits, cache.misses) == (1, 1)

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            BoundedCache(max_size=0)


class TestAuxCache:
    """Tests for timestamp and contract handle lookups."""

    def test_format_timestamp(self):
        assert format_timestamp(0) == "1970-01-01T00:00:00Z"
        assert format_timestamp(1_700_000_000) == "2023-11-14T22:13:20Z"

    @pytest.mark.asyncio
    async def test_timestamp_fetched_once(self, cache, ledger):
        first = await cache.get_timestamp(500)
        second = await cache.get_timestamp(500)

        assert first == second == "2023-11-14T22:13:20Z"
        ledger.get_block_timestamp.assert_awaited_once_with(500)

    @pytest.mark.asyncio
    async def test_timestamp_retried_through_executor(self, cache, ledger):
        ledger.get_block_timestamp = AsyncMock(side_effect=[ConnectionError("down"), 0])

        assert await cache.get_timestamp(7) == "1970-01-01T00:00:00Z"
        assert ledger.get_block_timestamp.await_count == 2

    @pytest.mark.asyncio
    async def test_timestamp_failure_propagates(self, cache, ledger):
        ledger.get_block_timestamp = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(ConnectionError):
            await cache.get_timestamp(7)

        assert 7 not in cache.timestamps

    @pytest.mark.asyncio
    async def test_timestamp_cache_bounded(self, ledger, executor):
        cache = AuxCache(ledger, executor, max_size=3)
        for block in range(5):
            await cache.get_timestamp(block)

        assert cache.timestamps.keys() == [2, 3, 4]

    def test_handle_created_once_per_address(self, cache, ledger):
        address = "0xa56f72b634ea2d74bd9cf6fcd44aa970871d4c25"

        first = cache.get_or_create_handle(address)
        second = cache.get_or_create_handle(address.upper().replace("0X", "0x"))

        assert first is second
        ledger.contract.assert_called_once()
        abi = ledger.contract.call_args[0][1]
        assert abi[0]["name"] == "balanceOf"

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.get_timestamp(1)
        await cache.get_timestamp(1)

        stats = cache.get_stats()
        assert stats['timestamps'] == 1
        assert stats['timestamp_hits'] == 1
        assert stats['timestamp_misses'] == 1
        assert stats['max_size'] == 100
