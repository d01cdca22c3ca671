"""AuditEntry validation: content-free by construction, fixed schema."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from phi_guard.domain.models.access import Action, Channel, FailureCode, Outcome
from phi_guard.domain.models.resource import ResourceRef
from phi_guard.governance.audit_models import (
    GENESIS_HASH,
    AuditEntry,
    AuditRecord,
    StorageTier,
    build_record,
    compute_record_hash,
)

TS = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _entry(**overrides) -> AuditEntry:
    values = dict(
        principal_id="dr-1",
        role="clinician@v1",
        action=Action.PHI_READ,
        resource_type="patient",
        resource_id="p-1",
        outcome=Outcome.SUCCESS,
        correlation_id="corr-1",
    )
    values.update(overrides)
    return AuditEntry(**values)


def test_entry_defaults_and_ref():
    entry = _entry()
    assert entry.channel == Channel.API
    assert entry.failure_code is None
    assert entry.ref == ResourceRef("patient", "p-1")


def test_unknown_fields_are_rejected():
    with pytest.raises(ValidationError):
        _entry(diagnosis="J45")


@pytest.mark.parametrize("field", ["principal_id", "resource_id", "correlation_id"])
def test_free_text_cannot_reach_reference_fields(field):
    with pytest.raises(ValidationError):
        _entry(**{field: "Jane Roe, DOB 1980-02-29"})


def test_success_with_failure_code_rejected():
    with pytest.raises(ValidationError):
        _entry(failure_code=FailureCode.TIMEOUT)


def test_denied_carries_failure_code():
    entry = _entry(outcome=Outcome.DENIED, failure_code=FailureCode.NOT_PERMITTED)
    assert entry.failure_code == FailureCode.NOT_PERMITTED


def test_entry_is_frozen():
    entry = _entry()
    with pytest.raises(ValidationError):
        entry.outcome = Outcome.DENIED


def test_build_record_seals_into_chain():
    record = build_record(_entry(), record_id=1, sequence=1, timestamp_utc=TS, previous_hash=GENESIS_HASH)
    assert record.previous_hash == GENESIS_HASH
    assert record.record_hash == compute_record_hash(record.hashed_fields(), GENESIS_HASH)
    assert record.tier == StorageTier.HOT
    assert record.ack.record_id == 1 and record.ack.sequence == 1


def test_record_dict_round_trip_preserves_hash():
    record = build_record(
        _entry(outcome=Outcome.FAILURE, failure_code=FailureCode.TIMEOUT),
        record_id=3,
        sequence=2,
        timestamp_utc=TS,
        previous_hash="a" * 64,
    )
    restored = AuditRecord.from_dict(record.to_dict())
    assert restored == record
    assert compute_record_hash(restored.hashed_fields(), restored.previous_hash) == record.record_hash


def test_hash_covers_every_recorded_field():
    first = build_record(_entry(), record_id=1, sequence=1, timestamp_utc=TS, previous_hash=GENESIS_HASH)
    other = build_record(
        _entry(principal_id="dr-2"), record_id=1, sequence=1, timestamp_utc=TS, previous_hash=GENESIS_HASH
    )
    assert first.record_hash != other.record_hash
