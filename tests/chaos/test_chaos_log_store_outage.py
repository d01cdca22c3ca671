"""
Chaos: log store and lock backend outages.
System must: fail closed while the store is down, keep chains gap-free across the outage,
and stop the scanner cleanly when the lock backend is unreachable.
"""

from unittest.mock import AsyncMock

import pytest

from phi_guard.application.exceptions import AuditWriteFailureError
from phi_guard.domain.models.access import Action, Outcome
from phi_guard.governance.audit_logger import AuditRecorder, AuditWriteExhaustedError
from phi_guard.governance.audit_models import AuditEntry
from phi_guard.governance.exceptions import LogStoreUnavailableError
from phi_guard.governance.integrity import verify_chain
from phi_guard.governance.retention_scheduler import RetentionScheduler
from phi_guard.scalability.circuit_breaker import CircuitBreaker, CircuitState
from phi_guard.scalability.distributed_lock import DistributedLock
from support import add_resource, records_for


class FailingBackend:
    """Lock backend that raises on every call (simulated Redis outage)."""

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool:
        raise ConnectionError("Redis connection refused")

    async def get(self, key: str) -> str | None:
        raise ConnectionError("Redis connection refused")

    async def delete_if_value(self, key: str, value: str) -> bool:
        raise ConnectionError("Redis connection refused")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def test_outage_fails_closed_then_chain_resumes_gap_free(container, patient, monkeypatch):
    await container.mediator.read("dr-1", patient.ref, ["name"])
    monkeypatch.setattr(
        container.log_store, "append", AsyncMock(side_effect=LogStoreUnavailableError("down"))
    )
    with pytest.raises(AuditWriteFailureError):
        await container.mediator.read("dr-1", patient.ref, ["name"])

    monkeypatch.undo()
    await container.mediator.read("dr-1", patient.ref, ["name"])
    records = await records_for(container, patient.ref)
    assert [r.sequence for r in records] == [1, 2]
    assert verify_chain(records) == 2


async def test_breaker_opens_and_recovers(container, patient, monkeypatch):
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout_seconds=10, clock=clock)
    real_append = container.log_store.append
    append = AsyncMock(side_effect=LogStoreUnavailableError("down"))
    monkeypatch.setattr(container.log_store, "append", append)
    recorder = AuditRecorder(container.log_store, attempts=5, backoff_seconds=0.0, circuit_breaker=breaker)

    entry = AuditEntry(
        principal_id="dr-1",
        action=Action.PHI_READ,
        resource_type="patient",
        resource_id="p-100",
        outcome=Outcome.SUCCESS,
        correlation_id="c-1",
    )
    with pytest.raises(AuditWriteExhaustedError):
        await recorder.record(entry)
    assert breaker.state == CircuitState.OPEN
    assert append.await_count == 3

    append.side_effect = real_append
    clock.now = 11
    ack = await recorder.record(entry)
    assert ack.sequence == 1
    assert breaker.state == CircuitState.CLOSED


async def test_scanner_stops_cleanly_when_lock_backend_down(container):
    expired = await add_resource(container, "p-1", age_days=7 * 366)
    scheduler = RetentionScheduler(
        catalog=container.catalog,
        resource_store=container.resource_store,
        recorder=container.recorder,
        policy_source=container.policy_source,
        reader=container.log_store,
        maintenance=container.log_store,
        lock=DistributedLock(FailingBackend()),
        identity=container.settings.scheduler_identity,
        audit_retention_class="audit-record",
    )
    with pytest.raises(ConnectionError):
        await scheduler.run_once()
    assert container.resource_store.content(expired.ref) is not None
    assert await records_for(container, expired.ref) == []
