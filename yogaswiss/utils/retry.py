"""
Retry with exponential backoff for transient failures.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable


logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay


async def retry_async(
    func: Callable,
    config: RetryConfig,
    *args,
    retryable_exceptions: tuple = (Exception,),
    non_retryable_exceptions: tuple = (),
    **kwargs
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: The async function to retry
        config: Retry configuration
        *args, **kwargs: Arguments to pass to the function
        retryable_exceptions: Exceptions that should trigger retries
        non_retryable_exceptions: Exceptions that are re-raised immediately

    Returns:
        The result of the function call

    Raises:
        The last exception if all retries are exhausted
    """
    last_exception = None

    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"{func.__name__} succeeded on attempt {attempt + 1}")
            return result

        except non_retryable_exceptions:
            raise

        except retryable_exceptions as e:
            last_exception = e
            if attempt == config.max_attempts - 1:
                break

            delay = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)

    logger.error(f"All {config.max_attempts} attempts failed for {func.__name__}")
    raise last_exception
