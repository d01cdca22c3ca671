"""AccessMediator: one audit record per call, fail closed, minimum necessary."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from phi_guard.application.exceptions import (
    OperationFailedError,
    OperationTimeoutError,
    ResourceConflictError,
    ServiceUnavailableError,
)
from phi_guard.core.context import correlation_id_ctx
from phi_guard.domain.exceptions import DomainValidationError
from phi_guard.domain.models.access import Action, Channel, FailureCode, Outcome
from phi_guard.domain.models.resource import LegalHold, ResourceRef, ResourceState
from phi_guard.governance.exceptions import RetentionBlockedError
from phi_guard.security.exceptions import AccessDeniedError
from support import add_resource, records_for


async def test_clinician_read_returns_only_entitled_fields(container, patient):
    data = await container.mediator.read(
        "dr-1", patient.ref, ["name", "dob", "diagnosis", "insurance"], correlation_id="corr-a"
    )
    assert data == {"name": "Jane Roe", "dob": "1980-02-29", "diagnosis": "J45"}

    records = await records_for(container, patient.ref)
    assert len(records) == 1
    record = records[0]
    assert record.principal_id == "dr-1"
    assert record.role == "clinician@v1"
    assert record.action == Action.PHI_READ
    assert record.outcome == Outcome.SUCCESS
    assert record.failure_code is None
    assert record.correlation_id == "corr-a"
    assert record.sequence == 1
    assert record.timestamp_utc.tzinfo is not None


async def test_denied_write_never_runs_operation(container, patient):
    fn = AsyncMock()
    with pytest.raises(AccessDeniedError):
        await container.mediator.mediate("bill-1", Action.PHI_WRITE, patient.ref, fn)
    fn.assert_not_awaited()

    (record,) = await records_for(container, patient.ref)
    assert record.outcome == Outcome.DENIED
    assert record.failure_code == FailureCode.NOT_PERMITTED
    assert record.role == "billing@v1"


async def test_missing_resource_is_indistinguishable_from_denial(container, patient):
    missing = ResourceRef("patient", "p-404")
    with pytest.raises(AccessDeniedError) as missing_exc:
        await container.mediator.read("dr-1", missing, ["name"])
    with pytest.raises(AccessDeniedError) as denied_exc:
        await container.mediator.write("bill-1", patient.ref, {"name": "x"})
    assert str(missing_exc.value) == str(denied_exc.value)

    (record,) = await records_for(container, missing)
    assert record.failure_code == FailureCode.RESOURCE_UNAVAILABLE


async def test_disposed_resource_is_unavailable(container, patient):
    patient.transition_to(ResourceState.DELETED)
    await container.catalog.save(patient)
    with pytest.raises(AccessDeniedError):
        await container.mediator.read("dr-1", patient.ref, ["name"])
    (record,) = await records_for(container, patient.ref)
    assert record.failure_code == FailureCode.RESOURCE_UNAVAILABLE


async def test_unknown_and_inactive_principals_denied(container, patient):
    with pytest.raises(AccessDeniedError):
        await container.mediator.read("ghost-1", patient.ref, ["name"])
    await container.directory.deactivate("dr-1")
    with pytest.raises(AccessDeniedError):
        await container.mediator.read("dr-1", patient.ref, ["name"])

    codes = [(r.principal_id, r.failure_code) for r in await records_for(container, patient.ref)]
    assert codes == [
        ("ghost-1", FailureCode.UNKNOWN_PRINCIPAL),
        ("dr-1", FailureCode.PRINCIPAL_INACTIVE),
    ]


async def test_invalid_principal_reference_rejected_before_decision(container, patient):
    with pytest.raises(DomainValidationError):
        await container.mediator.read("Dr. Jane Roe", patient.ref, ["name"])
    assert await records_for(container, patient.ref) == []


async def test_no_granted_fields_reads_nothing(container, patient):
    assert await container.mediator.read("dr-1", patient.ref, ["insurance"]) == {}
    (record,) = await records_for(container, patient.ref)
    assert record.outcome == Outcome.SUCCESS


async def test_subject_read_returns_everything_requested(container, patient):
    data = await container.mediator.read(
        "pat-1", patient.ref, ["name", "insurance"], action=Action.SUBJECT_READ
    )
    assert data == {"name": "Jane Roe", "insurance": "INS-9"}


async def test_subject_reads_own_record_under_phi_read(container, patient):
    container.policy_store.publish_role("patient-self", {"phi:subject-read", "phi:read"})
    container.policy_source.invalidate()
    data = await container.mediator.read("pat-1", patient.ref, ["insurance"])
    assert data == {"insurance": "INS-9"}


async def test_operation_error_recorded_as_failure(container, patient):
    async def broken(grant):
        raise OperationFailedError("store rejected write")

    with pytest.raises(OperationFailedError):
        await container.mediator.mediate("dr-1", Action.PHI_WRITE, patient.ref, broken)
    (record,) = await records_for(container, patient.ref)
    assert record.outcome == Outcome.FAILURE
    assert record.failure_code == FailureCode.OPERATION_ERROR


async def test_timeout_recorded_as_failure(container, patient):
    async def slow(grant):
        await asyncio.sleep(10)

    with pytest.raises(OperationTimeoutError):
        await container.mediator.mediate("dr-1", Action.PHI_READ, patient.ref, slow, timeout=0.01)
    (record,) = await records_for(container, patient.ref)
    assert record.failure_code == FailureCode.TIMEOUT


async def test_cancellation_recorded_before_propagating(container, patient):
    started = asyncio.Event()

    async def slow(grant):
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(
        container.mediator.mediate("dr-1", Action.PHI_READ, patient.ref, slow)
    )
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    (record,) = await records_for(container, patient.ref)
    assert record.outcome == Outcome.FAILURE
    assert record.failure_code == FailureCode.CANCELLED


async def test_failed_operation_leaves_store_unchanged(container, patient):
    async def half_write(grant):
        await grant.store.write(grant.ref, {"diagnosis": "E11"})
        raise OperationFailedError("second step failed")

    with pytest.raises(OperationFailedError):
        await container.mediator.mediate("dr-1", Action.PHI_WRITE, patient.ref, half_write)
    assert container.resource_store.content(patient.ref)["diagnosis"] == "J45"


async def test_policy_store_unreachable_fails_closed(container, patient, monkeypatch):
    monkeypatch.setattr(
        container.policy_store, "snapshot", AsyncMock(side_effect=ConnectionError("down"))
    )
    container.policy_source.invalidate()
    fn = AsyncMock()
    with pytest.raises(ServiceUnavailableError):
        await container.mediator.mediate("dr-1", Action.PHI_READ, patient.ref, fn)
    fn.assert_not_awaited()
    (record,) = await records_for(container, patient.ref)
    assert record.outcome == Outcome.DENIED
    assert record.failure_code == FailureCode.POLICY_UNAVAILABLE


async def test_directory_retried_then_unavailable(container, patient, monkeypatch):
    lookup = AsyncMock(side_effect=ConnectionError("directory down"))
    monkeypatch.setattr(container.directory, "get_principal", lookup)
    with pytest.raises(ServiceUnavailableError):
        await container.mediator.read("dr-1", patient.ref, ["name"])
    assert lookup.await_count == container.settings.policy_fetch_attempts
    (record,) = await records_for(container, patient.ref)
    assert record.failure_code == FailureCode.POLICY_UNAVAILABLE


async def test_directory_blip_recovers(container, patient, monkeypatch):
    real = container.directory.get_principal
    lookup = AsyncMock(side_effect=[ConnectionError("blip"), await real("dr-1")])
    monkeypatch.setattr(container.directory, "get_principal", lookup)
    assert await container.mediator.read("dr-1", patient.ref, ["name"]) == {"name": "Jane Roe"}


async def test_same_correlation_id_records_once(container, patient):
    for _ in range(2):
        await container.mediator.read("dr-1", patient.ref, ["name"], correlation_id="retry-1")
    records = await records_for(container, patient.ref)
    assert [r.correlation_id for r in records] == ["retry-1"]


async def test_correlation_id_reused_on_another_resource_is_recorded(container, patient):
    other = await add_resource(container, "p-200")
    await container.mediator.read("dr-1", patient.ref, ["name"], correlation_id="retry-1")
    await container.mediator.read("dr-1", other.ref, ["name"], correlation_id="retry-1")
    (record,) = await records_for(container, other.ref)
    assert record.correlation_id == "retry-1"
    assert record.sequence == 1


async def test_denied_attempt_does_not_absorb_a_later_access(container, patient):
    with pytest.raises(AccessDeniedError):
        await container.mediator.write("bill-1", patient.ref, {"name": "x"}, correlation_id="retry-1")
    await container.mediator.read("dr-1", patient.ref, ["name"], correlation_id="retry-1")
    records = await records_for(container, patient.ref)
    assert [(r.principal_id, r.outcome) for r in records] == [
        ("bill-1", Outcome.DENIED),
        ("dr-1", Outcome.SUCCESS),
    ]


async def test_correlation_id_taken_from_request_context(container, patient):
    token = correlation_id_ctx.set("req-77")
    try:
        await container.mediator.read("dr-1", patient.ref, ["name"])
    finally:
        correlation_id_ctx.reset(token)
    (record,) = await records_for(container, patient.ref)
    assert record.correlation_id == "req-77"


async def test_channel_is_recorded(container, patient):
    await container.mediator.read("dr-1", patient.ref, ["name"], channel=Channel.BATCH)
    (record,) = await records_for(container, patient.ref)
    assert record.channel == Channel.BATCH


async def test_write_commits_after_record(container, patient):
    await container.mediator.write("dr-1", patient.ref, {"diagnosis": "E11"})
    assert container.resource_store.content(patient.ref)["diagnosis"] == "E11"
    (record,) = await records_for(container, patient.ref)
    assert record.action == Action.PHI_WRITE


async def test_create_catalogues_new_resource(container):
    ref = ResourceRef("patient", "p-200")
    metadata = await container.mediator.create(
        "dr-1", ref, {"name": "John Doe"}, retention_class="medical-record", subject_id="pat-2"
    )
    assert metadata.owner_id == "dr-1"
    assert await container.catalog.get(ref) is metadata
    assert container.resource_store.content(ref) == {"name": "John Doe"}
    (record,) = await records_for(container, ref)
    assert record.action == Action.PHI_CREATE


async def test_create_existing_resource_conflicts(container, patient):
    with pytest.raises(ResourceConflictError):
        await container.mediator.create(
            "dr-1", patient.ref, {"name": "Other"}, retention_class="medical-record"
        )
    assert container.resource_store.content(patient.ref)["name"] == "Jane Roe"
    (record,) = await records_for(container, patient.ref)
    assert record.outcome == Outcome.FAILURE


async def test_delete_removes_content_and_marks_deleted(container, patient):
    await container.mediator.delete("rec-1", patient.ref)
    assert container.resource_store.content(patient.ref) is None
    assert (await container.catalog.get(patient.ref)).state == ResourceState.DELETED


async def test_delete_refused_under_legal_hold(container, patient):
    patient.legal_hold = LegalHold(
        active=True, reason="matter-1", placed_by="co-1", placed_at=datetime.now(timezone.utc)
    )
    with pytest.raises(RetentionBlockedError):
        await container.mediator.delete("rec-1", patient.ref)
    assert container.resource_store.content(patient.ref) is not None
    assert patient.state == ResourceState.ACTIVE
    (record,) = await records_for(container, patient.ref)
    assert record.outcome == Outcome.FAILURE


async def test_per_resource_sequence_is_gap_free(container, patient):
    other = await add_resource(container, "p-101")
    for _ in range(3):
        await container.mediator.read("dr-1", patient.ref, ["name"])
        await container.mediator.read("dr-1", other.ref, ["name"])
    for ref in (patient.ref, other.ref):
        assert [r.sequence for r in await records_for(container, ref)] == [1, 2, 3]


async def test_decisions_counted_by_outcome(container, patient):
    await container.mediator.read("dr-1", patient.ref, ["name"])
    with pytest.raises(AccessDeniedError):
        await container.mediator.write("bill-1", patient.ref, {"name": "x"})
    assert container.metrics.count("decisions", "success") == 1
    assert container.metrics.count("decisions", "denied") == 1


async def test_delete_without_permission_leaves_store_untouched(container, patient):
    with pytest.raises(AccessDeniedError):
        await container.mediator.delete("dr-1", patient.ref)
    assert container.resource_store.content(patient.ref) is not None
    assert patient.state == ResourceState.ACTIVE
    (record,) = await records_for(container, patient.ref)
    assert record.action == Action.PHI_DELETE
    assert record.outcome == Outcome.DENIED
