"""SQLAlchemy log store against in-memory SQLite (aiosqlite)."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from phi_guard.domain.models.access import Action, DispositionReason, Outcome
from phi_guard.domain.models.resource import ResourceRef
from phi_guard.governance.audit_models import AuditEntry, StorageTier
from phi_guard.governance.audit_repository import AuditQuery
from phi_guard.governance.exceptions import ChainIntegrityError
from phi_guard.governance.integrity import verify_chain
from phi_guard.infrastructure.database.log_store_db import SqlLogStore
from phi_guard.infrastructure.database.models import AuditRecordRow
from phi_guard.infrastructure.database.session import (
    build_engine,
    build_session_factory,
    create_schema,
)
from phi_guard.security.encryption import EncryptionService
from support import TEST_KEY

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _entry(resource_id="p-1", correlation_id="c-1", **overrides):
    values = dict(
        principal_id="dr-1",
        role="clinician@v1",
        action=Action.PHI_READ,
        resource_type="patient",
        resource_id=resource_id,
        outcome=Outcome.SUCCESS,
        correlation_id=correlation_id,
    )
    values.update(overrides)
    return AuditEntry(**values)


@pytest.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(sessions):
    return SqlLogStore(sessions, EncryptionService(TEST_KEY))


async def test_append_and_read_back(store):
    ack = await store.append(_entry(), T0)
    record = await store.find_by_correlation_id("c-1")
    assert record.record_id == ack.record_id
    assert record.role == "clinician@v1"
    assert record.timestamp_utc == T0
    assert verify_chain([record]) == 1


async def test_sequences_and_chain_per_resource(store):
    for i in range(3):
        await store.append(_entry("p-1", f"a-{i}"), T0 + timedelta(seconds=i))
    await store.append(_entry("p-2", "b-0"), T0)
    page = await store.fetch_page(AuditQuery(resource=ResourceRef("patient", "p-1")), None, 10)
    assert [r.sequence for r in page.records] == [1, 2, 3]
    all_records = await store.fetch_page(AuditQuery(), None, 10)
    assert verify_chain(all_records.records) == 4


async def test_same_access_written_once(store):
    first = await store.append(_entry(), T0)
    again = await store.append(_entry(), T0 + timedelta(seconds=5))
    assert again == first
    page = await store.fetch_page(AuditQuery(), None, 10)
    assert len(page.records) == 1


async def test_reused_correlation_id_on_other_access_gets_own_record(store):
    first = await store.append(_entry(), T0)
    other_resource = await store.append(_entry("p-2"), T0)
    other_principal = await store.append(_entry(principal_id="bill-1", outcome=Outcome.DENIED), T0)
    assert len({first.record_id, other_resource.record_id, other_principal.record_id}) == 3
    assert (await store.find_by_correlation_id("c-1")).record_id == first.record_id


async def test_disposition_fields_survive_storage(store):
    await store.append(
        _entry(
            action=Action.PHI_DELETE,
            principal_id="svc-retention-scheduler",
            policy_version=3,
            justification=DispositionReason.RETENTION_ELAPSED,
        ),
        T0,
    )
    record = await store.find_by_correlation_id("c-1")
    assert record.policy_version == 3
    assert record.justification == DispositionReason.RETENTION_ELAPSED
    assert verify_chain([record]) == 1


async def test_filters_and_cursor(store):
    for i in range(5):
        await store.append(
            _entry(correlation_id=f"c-{i}", principal_id="dr-1" if i % 2 else "dr-2"),
            T0 + timedelta(hours=i),
        )
    by_principal = await store.fetch_page(AuditQuery(principal_id="dr-1"), None, 10)
    assert [r.correlation_id for r in by_principal.records] == ["c-1", "c-3"]

    window = await store.fetch_page(
        AuditQuery(start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=3)), None, 10
    )
    assert [r.correlation_id for r in window.records] == ["c-1", "c-2"]

    first = await store.fetch_page(AuditQuery(), None, 2)
    second = await store.fetch_page(AuditQuery(), first.next_cursor, 2)
    assert [r.correlation_id for r in second.records] == ["c-2", "c-3"]


async def test_migration_moves_rows_to_sealed_tier(store):
    for i in range(3):
        await store.append(_entry(correlation_id=f"c-{i}"), T0 + timedelta(days=i))
    assert await store.migrate_to_cold(T0 + timedelta(days=2)) == 2
    page = await store.fetch_page(AuditQuery(), None, 10)
    assert [r.tier for r in page.records] == [StorageTier.COLD, StorageTier.COLD, StorageTier.HOT]
    assert verify_chain(page.records) == 3


async def test_sealed_rows_keep_no_detail_in_plaintext(store, sessions):
    await store.append(_entry(role="oncology@v2"), T0)
    await store.migrate_to_cold(T0 + timedelta(days=1))
    async with sessions() as session:
        row = await session.scalar(select(AuditRecordRow))
    assert row.tier == StorageTier.COLD.value
    assert row.role is None
    assert row.record_hash is None
    assert b"oncology" not in row.sealed_payload
    hot_only = await store.fetch_page(AuditQuery(include_cold=False), None, 10)
    assert hot_only.records == []


async def test_cold_tier_survives_a_new_store_instance(store, sessions):
    ack = await store.append(_entry(), T0)
    await store.migrate_to_cold(T0 + timedelta(days=1))

    restarted = SqlLogStore(sessions, EncryptionService(TEST_KEY))
    record = await restarted.find_by_correlation_id("c-1")
    assert record.record_id == ack.record_id
    assert record.tier == StorageTier.COLD
    assert record.role == "clinician@v1"
    assert verify_chain([record]) == 1
    assert await restarted.append(_entry(), T0 + timedelta(days=2)) == ack


async def test_purged_record_ids_are_not_reused(store):
    first = await store.append(_entry(correlation_id="c-0"), T0)
    second = await store.append(_entry(correlation_id="c-1"), T0)
    assert await store.purge_expired(T0 + timedelta(days=1), keep=lambda r: False) == (2, 0)
    third = await store.append(_entry(correlation_id="c-2"), T0 + timedelta(days=2))
    assert third.record_id > max(first.record_id, second.record_id)


async def test_purge_keeps_protected_records(store):
    await store.append(_entry("p-1", "a-0"), T0)
    await store.append(_entry("p-2", "b-0"), T0)
    purged, kept = await store.purge_expired(T0 + timedelta(days=1), keep=lambda r: r.resource_id == "p-2")
    assert (purged, kept) == (1, 1)
    page = await store.fetch_page(AuditQuery(), None, 10)
    assert [r.resource_id for r in page.records] == ["p-2"]


async def test_tampered_row_fails_verification(store, sessions):
    await store.append(_entry(), T0)
    async with sessions() as session:
        async with session.begin():
            await session.execute(update(AuditRecordRow).values(principal_id="dr-9"))
    page = await store.fetch_page(AuditQuery(), None, 10)
    with pytest.raises(ChainIntegrityError):
        verify_chain(page.records)


async def test_rows_are_never_updated_by_appends(store, sessions):
    await store.append(_entry(correlation_id="c-0"), T0)
    async with sessions() as session:
        before = (await session.scalars(select(AuditRecordRow.record_hash))).all()
    await store.append(_entry(correlation_id="c-1"), T0)
    async with sessions() as session:
        after = (await session.scalars(select(AuditRecordRow.record_hash))).all()
    assert after[: len(before)] == before
