"""Middleware components for the YogaSwiss studio backend."""

from .error_handler import ErrorHandlerMiddleware
from .validation import ValidationMiddleware
from .rate_limiter import RateLimiterMiddleware
from .logging import LoggingMiddleware

__all__ = [
    "ErrorHandlerMiddleware",
    "ValidationMiddleware",
    "RateLimiterMiddleware",
    "LoggingMiddleware"
]
