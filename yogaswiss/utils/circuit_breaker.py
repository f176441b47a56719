"""
Circuit breaker for payment provider calls.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..utils.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: int = 60
    success_threshold: int = 2
    timeout: float = 30.0
    # Only these count as failures; anything else passes straight through
    expected_exception: tuple = (ExternalServiceError, OSError)


@dataclass
class CircuitBreakerStats:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: Optional[float] = None
    total_requests: int = 0
    total_failures: int = 0
    state_changes: Dict[str, int] = field(default_factory=dict)


class CircuitBreaker:
    """Fail fast once a provider keeps failing, probe again after a cool-down."""

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self.stats = CircuitBreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self.stats.state

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute ``func`` with circuit breaker protection."""
        async with self._lock:
            self.stats.total_requests += 1
            if self._should_attempt_reset():
                self._transition(CircuitState.HALF_OPEN)

            if self.stats.state == CircuitState.OPEN:
                raise ExternalServiceError(
                    self.name,
                    f"Circuit breaker is open for {self.name}",
                    details={"failure_count": self.stats.failure_count},
                    retry_after=self.config.recovery_timeout,
                )

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except asyncio.TimeoutError:
            await self._record_failure()
            raise ExternalServiceError(
                self.name,
                f"Request timeout after {self.config.timeout}s",
                details={"timeout": self.config.timeout}
            )
        except self.config.expected_exception:
            await self._record_failure()
            raise

        await self._record_success()
        return result

    async def _record_success(self):
        async with self._lock:
            self.stats.success_count += 1
            if self.stats.state == CircuitState.CLOSED:
                self.stats.failure_count = 0
            elif (self.stats.state == CircuitState.HALF_OPEN
                  and self.stats.success_count >= self.config.success_threshold):
                self._transition(CircuitState.CLOSED)

    async def _record_failure(self):
        async with self._lock:
            self.stats.failure_count += 1
            self.stats.total_failures += 1
            self.stats.last_failure_time = time.time()

            if self.stats.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (self.stats.state == CircuitState.CLOSED
                  and self.stats.failure_count >= self.config.failure_threshold):
                self._transition(CircuitState.OPEN)

            logger.warning(f"Circuit breaker {self.name}: failure recorded ({self.stats.failure_count})")

    def _should_attempt_reset(self) -> bool:
        if self.stats.state != CircuitState.OPEN or not self.stats.last_failure_time:
            return False
        return time.time() - self.stats.last_failure_time >= self.config.recovery_timeout

    def _transition(self, new_state: CircuitState):
        old_state = self.stats.state
        self.stats.state = new_state
        self.stats.success_count = 0
        if new_state == CircuitState.CLOSED:
            self.stats.failure_count = 0
        key = f"{old_state.value}_to_{new_state.value}"
        self.stats.state_changes[key] = self.stats.state_changes.get(key, 0) + 1
        logger.warning(f"Circuit breaker {self.name}: {old_state.value} -> {new_state.value}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.stats.state.value,
            "failure_count": self.stats.failure_count,
            "total_requests": self.stats.total_requests,
            "total_failures": self.stats.total_failures,
            "last_failure_time": self.stats.last_failure_time,
            "state_changes": dict(self.stats.state_changes),
        }


class CircuitBreakerRegistry:
    """Registry for managing multiple circuit breakers."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(name, config or CircuitBreakerConfig())
        return self._breakers[name]

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_stats() for name, breaker in self._breakers.items()}


_registry = CircuitBreakerRegistry()


def get_circuit_breaker(name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
    return _registry.get_breaker(name, config)


def get_registry() -> CircuitBreakerRegistry:
    return _registry


def get_payment_circuit_breaker(provider: str) -> CircuitBreaker:
    """Circuit breaker shared by all calls to one payment provider."""
    from ..config import get_settings

    settings = get_settings()
    config = CircuitBreakerConfig(
        failure_threshold=settings.circuit_breaker_failure_threshold,
        recovery_timeout=settings.circuit_breaker_recovery_timeout,
        timeout=15.0,
    )
    return get_circuit_breaker(f"payment:{provider}", config)
