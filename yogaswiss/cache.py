"""
Redis caching layer.

Every operation degrades to a no-op (or an empty result) when Redis is not
connected, so the API keeps working without a cache.
"""

import json
import logging
from typing import Any, Optional, Dict, List

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError
from redis.exceptions import ConnectionError as RedisConnectionError

from .config import get_settings

logger = logging.getLogger(__name__)


class CacheKeyBuilder:
    """Helper class for building consistent cache keys."""

    @staticmethod
    def financial_summary(org_id: str, period_start: str, period_end: str) -> str:
        return f"reports:summary:{org_id}:{period_start}:{period_end}"

    @staticmethod
    def booking_analytics(org_id: str, period_days: int) -> str:
        return f"reports:bookings:{org_id}:{period_days}"

    @staticmethod
    def org_reports(org_id: str) -> str:
        return f"reports:*:{org_id}:*"

    @staticmethod
    def idempotent_booking(org_id: str, key: str) -> str:
        return f"idempotency:booking:{org_id}:{key}"

    @staticmethod
    def payment_methods(org_id: str) -> str:
        return f"payments:methods:{org_id}"


class CacheTTL:
    """Cache TTL constants (seconds)."""

    FINANCIAL_SUMMARY = 60
    BOOKING_ANALYTICS = 300
    IDEMPOTENCY = 24 * 3600
    PAYMENT_METHODS = 600


class RedisCache:
    """Redis cache manager with connection handling and operations."""

    def __init__(self):
        self.client: Optional[Redis] = None
        self.pool: Optional[redis.ConnectionPool] = None

    async def initialize(self) -> None:
        """Connect to Redis. Failure leaves the cache disabled."""
        settings = get_settings()

        try:
            self.pool = redis.ConnectionPool.from_url(
                settings.redis_url,
                max_connections=settings.redis_max_connections,
                retry_on_timeout=True,
                socket_keepalive=True,
                health_check_interval=30
            )
            client = Redis(connection_pool=self.pool)
            await client.ping()
            self.client = client
            logger.info("Redis cache initialized successfully")
        except (RedisConnectionError, RedisError, OSError) as e:
            logger.warning("Redis unavailable, continuing without cache: %s", e)
            self.client = None

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
        if self.pool:
            await self.pool.disconnect()
        self.client = None
        logger.info("Redis cache connections closed")

    @property
    def available(self) -> bool:
        return self.client is not None

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found
        """
        if not self.client:
            return None

        try:
            value = await self.client.get(key)
            if value:
                return json.loads(value.decode("utf-8"))
            return None
        except (RedisError, ValueError) as e:
            logger.warning("Failed to get cache key %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if not self.client:
            return False

        try:
            serialized_value = json.dumps(value, default=str)
            if ttl:
                await self.client.setex(key, ttl, serialized_value)
            else:
                await self.client.set(key, serialized_value)
            return True
        except (RedisError, TypeError) as e:
            logger.warning("Failed to set cache key %s: %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        if not self.client:
            return False

        try:
            await self.client.delete(key)
            return True
        except RedisError as e:
            logger.warning("Failed to delete cache key %s: %s", key, e)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern."""
        if not self.client:
            return 0

        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if keys:
                await self.client.delete(*keys)
            return len(keys)
        except RedisError as e:
            logger.warning("Failed to delete keys with pattern %s: %s", pattern, e)
            return 0

    async def ping(self) -> bool:
        if not self.client:
            return False
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    # Sorted set operations used by the rate limiter
    async def zrange(self, key: str, start: int, end: int, withscores: bool = False) -> List:
        if not self.client:
            return []

        try:
            return await self.client.zrange(key, start, end, withscores=withscores)
        except RedisError as e:
            logger.warning("Failed to zrange key %s: %s", key, e)
            return []

    async def sliding_window_hit(self, key: str, now: float, window: int, member: str) -> Optional[int]:
        """
        Record a hit in a sorted-set sliding window.

        Returns:
            Number of hits already inside the window before this one,
            or None when the cache is unavailable
        """
        if not self.client:
            return None

        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(key, 0, now - window)
            pipe.zcard(key)
            pipe.zadd(key, {member: now})
            pipe.expire(key, window * 2)
            results = await pipe.execute()
            return int(results[1])
        except RedisError as e:
            logger.warning("Failed to record rate limit hit for %s: %s", key, e)
            return None


cache = RedisCache()


async def init_cache() -> None:
    await cache.initialize()


async def close_cache() -> None:
    await cache.close()


def get_cache() -> RedisCache:
    return cache


class CacheInvalidator:
    """Helper class for cache invalidation."""

    @staticmethod
    async def invalidate_org_reports(org_id: str) -> None:
        """Drop cached reports after money moved in an organization."""
        deleted = await cache.delete_pattern(CacheKeyBuilder.org_reports(org_id))
        if deleted:
            logger.debug("Invalidated %s report cache keys for org %s", deleted, org_id)

    @staticmethod
    async def invalidate_payment_methods(org_id: str) -> None:
        await cache.delete(CacheKeyBuilder.payment_methods(org_id))
