"""CircuitBreaker on the log store path: CLOSED -> OPEN -> HALF_OPEN."""

import pytest

from phi_guard.governance.exceptions import LogStoreUnavailableError
from phi_guard.observability.metrics import MetricsCollector
from phi_guard.scalability.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def ok():
    return 42


async def unavailable():
    raise LogStoreUnavailableError("store down")


@pytest.mark.asyncio
async def test_closed_success():
    cb = CircuitBreaker(failure_threshold=3, recovery_timeout_seconds=0.1)

    result = await cb.call(ok)
    assert result == 42
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_opens_after_threshold_and_fails_fast():
    calls = []

    async def counted():
        calls.append(1)
        raise LogStoreUnavailableError("store down")

    cb = CircuitBreaker(failure_threshold=3, recovery_timeout_seconds=10.0)
    for _ in range(3):
        with pytest.raises(LogStoreUnavailableError):
            await cb.call(counted)
    assert cb.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError, match="OPEN"):
        await cb.call(counted)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    cb = CircuitBreaker(failure_threshold=2, recovery_timeout_seconds=10.0)
    with pytest.raises(LogStoreUnavailableError):
        await cb.call(unavailable)
    await cb.call(ok)
    with pytest.raises(LogStoreUnavailableError):
        await cb.call(unavailable)
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_trial_success_closes():
    clock = FakeClock()
    cb = CircuitBreaker(failure_threshold=2, recovery_timeout_seconds=5.0, clock=clock)
    for _ in range(2):
        with pytest.raises(LogStoreUnavailableError):
            await cb.call(unavailable)
    assert cb.state == CircuitState.OPEN

    clock.now += 5.0
    assert await cb.call(ok) == 42
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_failure_opens_again():
    clock = FakeClock()
    cb = CircuitBreaker(failure_threshold=2, recovery_timeout_seconds=5.0, clock=clock)
    for _ in range(2):
        with pytest.raises(LogStoreUnavailableError):
            await cb.call(unavailable)
    clock.now += 6.0
    with pytest.raises(LogStoreUnavailableError):
        await cb.call(unavailable)
    assert cb.state == CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await cb.call(ok)


@pytest.mark.asyncio
async def test_failures_counted_under_breaker_name():
    metrics = MetricsCollector()
    cb = CircuitBreaker(failure_threshold=5, name="log_store", metrics=metrics)
    for _ in range(2):
        with pytest.raises(LogStoreUnavailableError):
            await cb.call(unavailable)
    assert metrics.count("circuit_breaker_failure", "log_store") == 2
