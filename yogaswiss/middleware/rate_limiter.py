"""
Rate limiting middleware with Redis backend.
"""

import logging
import time
from typing import Dict, Optional, Tuple
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..cache import RedisCache, get_cache
from ..utils.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiting. Requests pass through when Redis is down."""

    def __init__(
        self,
        app,
        default_limit: int = 100,
        default_window: int = 60,
        burst_limit: int = 20,
        burst_window: int = 1,
        cache: Optional[RedisCache] = None
    ):
        super().__init__(app)
        self.default_limit = default_limit
        self.default_window = default_window
        self.burst_limit = burst_limit
        self.burst_window = burst_window
        self.cache = cache or get_cache()

        # Tighter limits for booking and auth; webhooks are left to the provider's retry policy
        self.endpoint_limits: Dict[str, Dict[str, int]] = {
            "/api/v1/registrations": {"limit": 30, "window": 60},
            "/api/v1/payments/process": {"limit": 20, "window": 60},
            "/api/v1/auth/login": {"limit": 5, "window": 300},
            "/api/v1/auth/register": {"limit": 3, "window": 300},
        }
        self.exempt_paths = {"/health", "/health/detailed", "/", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths or not self.cache.available:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        endpoint = self._get_endpoint_pattern(request.url.path)

        exceeded, retry_after = await self._hit(
            f"rate_limit:burst:{client_ip}", self.burst_limit, self.burst_window
        )
        if exceeded:
            return self._create_rate_limit_response(self.burst_limit, self.burst_window, retry_after)

        limit, window = self._limits_for(endpoint)
        exceeded, retry_after = await self._hit(f"rate_limit:{endpoint}:ip:{client_ip}", limit, window)
        if exceeded:
            return self._create_rate_limit_response(limit, window, retry_after)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Window"] = str(window)
        return response

    def _limits_for(self, endpoint: str) -> Tuple[int, int]:
        config = self.endpoint_limits.get(endpoint)
        if config:
            return config["limit"], config["window"]
        return self.default_limit, self.default_window

    async def _hit(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        """Record a request and report whether the window was already full."""
        now = time.time()
        current_count = await self.cache.sliding_window_hit(key, now, window, f"{now}:{uuid4().hex[:8]}")
        if current_count is None or current_count < limit:
            return False, 0

        oldest = await self.cache.zrange(key, 0, 0, withscores=True)
        if oldest:
            retry_after = max(1, int(oldest[0][1] + window - now))
        else:
            retry_after = window
        return True, retry_after

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"

    def _get_endpoint_pattern(self, path: str) -> str:
        for pattern in self.endpoint_limits:
            if path.startswith(pattern):
                return pattern
        return "default"

    def _create_rate_limit_response(self, limit: int, window: int, retry_after: int) -> JSONResponse:
        error = RateLimitError(limit, window, retry_after)
        logger.warning(f"Rate limit exceeded: {limit}/{window}s")

        return JSONResponse(
            status_code=429,
            content={"error": error.to_dict()},
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Window": str(window)
            }
        )
