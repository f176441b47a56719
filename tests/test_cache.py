"""Tests for the Redis cache wrapper."""

import pytest
from redis.exceptions import RedisError

from conftest import InMemoryRedis
from yogaswiss.cache import CacheKeyBuilder, RedisCache


class BrokenRedis(InMemoryRedis):
    async def get(self, key):
        raise RedisError("connection reset")


@pytest.fixture
def connected():
    cache = RedisCache()
    cache.client = InMemoryRedis()
    return cache


async def test_disconnected_cache_is_a_no_op():
    cache = RedisCache()

    assert cache.available is False
    assert await cache.get("anything") is None
    assert await cache.set("anything", {"a": 1}) is False
    assert await cache.delete("anything") is False
    assert await cache.delete_pattern("reports:*") == 0


async def test_values_round_trip_as_json(connected):
    assert await connected.set("k", {"total_cents": 500}, ttl=60) is True

    assert await connected.get("k") == {"total_cents": 500}
    assert connected.client.ttls["k"] == 60


async def test_report_keys_of_one_org_are_invalidated_together(connected):
    await connected.set(CacheKeyBuilder.financial_summary("org-1", "2026-10-01", "2026-10-31"), {})
    await connected.set(CacheKeyBuilder.booking_analytics("org-1", 30), {})
    await connected.set(CacheKeyBuilder.booking_analytics("org-2", 30), {})

    deleted = await connected.delete_pattern(CacheKeyBuilder.org_reports("org-1"))

    assert deleted == 2
    assert list(connected.client.store) == [CacheKeyBuilder.booking_analytics("org-2", 30)]


async def test_redis_errors_read_as_misses():
    cache = RedisCache()
    cache.client = BrokenRedis()

    assert await cache.get("k") is None
