"""Circuit breaker for the audit append path: CLOSED, OPEN, HALF_OPEN."""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from phi_guard.observability.metrics import MetricsCollector

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised instead of calling through while the circuit is open."""


class CircuitBreaker:
    """
    After failure_threshold consecutive failures, short-circuit for recovery_timeout_seconds,
    then let one trial call through. Async-safe via asyncio.Lock.
    Only failures of the wrapped dependency count; an open circuit fails fast so the
    recorder's bounded retry is not spent waiting on a dead store.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 30.0,
        name: str = "log_store",
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = failure_threshold
        self._recovery_timeout = recovery_timeout_seconds
        self._name = name
        self._metrics = metrics
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _record_success(self) -> None:
        self._failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = None

    def _record_failure(self) -> None:
        self._failures += 1
        if self._metrics:
            self._metrics.increment("circuit_breaker_failure", category=self._name)
        if self._state == CircuitState.HALF_OPEN or self._failures >= self._threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Execute func through the circuit. Raises CircuitOpenError while OPEN."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._opened_at is None or self._clock() - self._opened_at < self._recovery_timeout:
                    raise CircuitOpenError(f"Circuit breaker {self._name} is OPEN")
                self._state = CircuitState.HALF_OPEN
        try:
            result = await func(*args, **kwargs)
        except Exception:
            async with self._lock:
                self._record_failure()
            raise
        async with self._lock:
            self._record_success()
        return result
