"""
Health check utilities for monitoring service dependencies.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..cache import get_cache
from ..database import get_db_session

logger = logging.getLogger(__name__)


class HealthCheckResult:
    """Result of a health check."""

    def __init__(self, service: str, healthy: bool, response_time: float, details: Optional[Dict[str, Any]] = None):
        self.service = service
        self.healthy = healthy
        self.response_time = response_time
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "healthy": self.healthy,
            "response_time": round(self.response_time, 4),
            "details": self.details,
            "timestamp": self.timestamp
        }


async def check_database_health() -> HealthCheckResult:
    """Run ``SELECT 1`` against the database."""
    start_time = time.time()

    try:
        async with get_db_session() as db:
            result = await db.execute(text("SELECT 1"))
            value = result.scalar()
    except (SQLAlchemyError, RuntimeError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return HealthCheckResult(
            service="database",
            healthy=False,
            response_time=time.time() - start_time,
            details={"error": str(e), "error_type": type(e).__name__}
        )

    return HealthCheckResult(
        service="database",
        healthy=value == 1,
        response_time=time.time() - start_time,
        details={"query": "SELECT 1"}
    )


async def check_redis_health() -> HealthCheckResult:
    """Ping Redis. A missing connection is reported, not raised."""
    start_time = time.time()
    cache = get_cache()

    if not cache.available:
        return HealthCheckResult(
            service="redis",
            healthy=False,
            response_time=0.0,
            details={"error": "not connected", "degraded": True}
        )

    try:
        healthy = await cache.ping()
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        healthy = False

    return HealthCheckResult(
        service="redis",
        healthy=healthy,
        response_time=time.time() - start_time,
        details={"operation": "ping"}
    )


async def get_health_status() -> Dict[str, Any]:
    """
    Aggregate dependency checks.

    The database is critical; Redis only degrades the service.
    """
    database, redis = await asyncio.gather(check_database_health(), check_redis_health())

    if not database.healthy:
        overall = "unhealthy"
    elif not redis.healthy:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "database": database.to_dict(),
            "redis": redis.to_dict(),
        }
    }
