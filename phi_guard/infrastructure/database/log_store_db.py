"""DB-backed log store. Both tiers live in the audit_records table; cold rows are sealed."""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from phi_guard.domain.models.access import (
    Action,
    Channel,
    DispositionReason,
    FailureCode,
    Outcome,
)
from phi_guard.governance.audit_models import (
    GENESIS_HASH,
    AuditAck,
    AuditEntry,
    AuditRecord,
    StorageTier,
    build_record,
    idempotency_key,
)
from phi_guard.governance.audit_repository import AuditPage, AuditQuery
from phi_guard.governance.exceptions import LogStoreUnavailableError
from phi_guard.infrastructure.database.models import AuditRecordRow, ChainHeadRow
from phi_guard.scalability.keyed_lock import KeyedLocks
from phi_guard.security.encryption import EncryptionService

_DETAIL_COLUMNS = (
    "role",
    "action",
    "outcome",
    "failure_code",
    "channel",
    "policy_version",
    "justification",
    "previous_hash",
    "record_hash",
)


def _utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlLogStore:
    """
    Implements AuditWriter, AuditReader and AuditMaintenance over SQLAlchemy async.
    The chain-head row is locked FOR UPDATE so concurrent writers on other nodes
    serialise per resource; unique constraints on (resource, sequence) and on the
    idempotency key back the ordering and exactly-once guarantees in both tiers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sealer: EncryptionService,
    ) -> None:
        self._sessions = session_factory
        self._sealer = sealer
        self._locks = KeyedLocks()
        self._subscribers: List["asyncio.Queue[AuditRecord]"] = []

    def _to_record(self, row: AuditRecordRow) -> AuditRecord:
        if row.tier == StorageTier.COLD.value:
            return AuditRecord.from_dict(self._sealer.unseal(row.sealed_payload))
        return AuditRecord(
            record_id=row.record_id,
            sequence=row.sequence,
            principal_id=row.principal_id,
            role=row.role or "",
            action=Action(row.action),
            resource_type=row.resource_type,
            resource_id=row.resource_id,
            timestamp_utc=_utc(row.timestamp_utc),
            outcome=Outcome(row.outcome),
            failure_code=FailureCode(row.failure_code) if row.failure_code else None,
            channel=Channel(row.channel),
            correlation_id=row.correlation_id,
            policy_version=row.policy_version,
            justification=DispositionReason(row.justification) if row.justification else None,
            previous_hash=row.previous_hash,
            record_hash=row.record_hash,
        )

    async def append(self, entry: AuditEntry, timestamp_utc: datetime) -> AuditAck:
        key = f"{entry.resource_type}:{entry.resource_id}"
        async with self._locks.hold(key):
            try:
                record, created = await self._append_locked(entry, timestamp_utc)
            except IntegrityError as e:
                # Lost a cross-node race on the head row or idempotency key; retryable.
                raise LogStoreUnavailableError(f"Append conflict for {key}") from e
            except OperationalError as e:
                raise LogStoreUnavailableError(f"Log store unavailable: {e.orig}") from e
        if created:
            for queue in self._subscribers:
                queue.put_nowait(record)
        return record.ack

    async def _append_locked(self, entry: AuditEntry, timestamp_utc: datetime) -> Tuple[AuditRecord, bool]:
        dedup = idempotency_key(entry)
        async with self._sessions() as session:
            async with session.begin():
                head = await session.scalar(
                    select(ChainHeadRow)
                    .where(
                        ChainHeadRow.resource_type == entry.resource_type,
                        ChainHeadRow.resource_id == entry.resource_id,
                    )
                    .with_for_update()
                )
                # Checked under the head lock: a racing writer with the same key has committed.
                existing = await session.scalar(
                    select(AuditRecordRow).where(AuditRecordRow.idempotency_key == dedup)
                )
                if existing is not None:
                    return self._to_record(existing), False
                if head is None:
                    head = ChainHeadRow(
                        resource_type=entry.resource_type,
                        resource_id=entry.resource_id,
                        last_sequence=0,
                        last_hash=GENESIS_HASH,
                    )
                    session.add(head)
                row = AuditRecordRow(
                    tier=StorageTier.HOT.value,
                    sequence=head.last_sequence + 1,
                    principal_id=entry.principal_id,
                    role=entry.role,
                    action=entry.action.value,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    timestamp_utc=timestamp_utc,
                    outcome=entry.outcome.value,
                    failure_code=entry.failure_code.value if entry.failure_code else None,
                    channel=entry.channel.value,
                    correlation_id=entry.correlation_id,
                    idempotency_key=dedup,
                    policy_version=entry.policy_version,
                    justification=entry.justification.value if entry.justification else None,
                    previous_hash=head.last_hash,
                    record_hash="",
                )
                session.add(row)
                await session.flush()
                record = build_record(
                    entry,
                    record_id=row.record_id,
                    sequence=row.sequence,
                    timestamp_utc=_utc(timestamp_utc),
                    previous_hash=head.last_hash,
                )
                row.record_hash = record.record_hash
                head.last_sequence = record.sequence
                head.last_hash = record.record_hash
        return record, True

    def _filtered(self, query: AuditQuery):
        stmt = select(AuditRecordRow)
        if query.resource is not None:
            stmt = stmt.where(
                AuditRecordRow.resource_type == query.resource.resource_type,
                AuditRecordRow.resource_id == query.resource.resource_id,
            )
        if query.principal_id is not None:
            stmt = stmt.where(AuditRecordRow.principal_id == query.principal_id)
        if query.start is not None:
            stmt = stmt.where(AuditRecordRow.timestamp_utc >= query.start)
        if query.end is not None:
            stmt = stmt.where(AuditRecordRow.timestamp_utc < query.end)
        if not query.include_cold:
            stmt = stmt.where(AuditRecordRow.tier == StorageTier.HOT.value)
        return stmt

    async def fetch_page(self, query: AuditQuery, after: Optional[int], limit: int) -> AuditPage:
        stmt = self._filtered(query)
        if after is not None:
            stmt = stmt.where(AuditRecordRow.record_id > after)
        stmt = stmt.order_by(AuditRecordRow.record_id).limit(limit)
        try:
            async with self._sessions() as session:
                rows = (await session.scalars(stmt)).all()
        except OperationalError as e:
            raise LogStoreUnavailableError(f"Log store unavailable: {e.orig}") from e
        page = [self._to_record(row) for row in rows]
        next_cursor = page[-1].record_id if len(page) == limit else None
        return AuditPage(records=page, next_cursor=next_cursor)

    async def find_by_correlation_id(self, correlation_id: str) -> Optional[AuditRecord]:
        try:
            async with self._sessions() as session:
                row = await session.scalar(
                    select(AuditRecordRow)
                    .where(AuditRecordRow.correlation_id == correlation_id)
                    .order_by(AuditRecordRow.record_id)
                    .limit(1)
                )
        except OperationalError as e:
            raise LogStoreUnavailableError(f"Log store unavailable: {e.orig}") from e
        return self._to_record(row) if row is not None else None

    def subscribe(self) -> "asyncio.Queue[AuditRecord]":
        queue: "asyncio.Queue[AuditRecord]" = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[AuditRecord]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def migrate_to_cold(self, older_than: datetime) -> int:
        async with self._sessions() as session:
            async with session.begin():
                rows = (
                    await session.scalars(
                        select(AuditRecordRow)
                        .where(
                            AuditRecordRow.tier == StorageTier.HOT.value,
                            AuditRecordRow.timestamp_utc < older_than,
                        )
                        .order_by(AuditRecordRow.record_id)
                    )
                ).all()
                for row in rows:
                    sealed = replace(self._to_record(row), tier=StorageTier.COLD)
                    row.sealed_payload = self._sealer.seal(sealed.to_dict())
                    row.tier = StorageTier.COLD.value
                    for column in _DETAIL_COLUMNS:
                        setattr(row, column, None)
        return len(rows)

    async def purge_expired(
        self,
        older_than: datetime,
        keep: Callable[[AuditRecord], bool],
    ) -> Tuple[int, int]:
        kept = 0
        async with self._sessions() as session:
            async with session.begin():
                rows = (
                    await session.scalars(
                        select(AuditRecordRow).where(AuditRecordRow.timestamp_utc < older_than)
                    )
                ).all()
                doomed = []
                for row in rows:
                    if keep(self._to_record(row)):
                        kept += 1
                    else:
                        doomed.append(row.record_id)
                if doomed:
                    await session.execute(
                        delete(AuditRecordRow).where(AuditRecordRow.record_id.in_(doomed))
                    )
        return len(doomed), kept
