"""In-memory append-only log store. Per-resource serialisation; hot tier plus sealed cold tier."""

import asyncio
import itertools
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from phi_guard.governance.audit_models import (
    GENESIS_HASH,
    AuditAck,
    AuditEntry,
    AuditRecord,
    build_record,
    idempotency_key,
)
from phi_guard.governance.audit_repository import AuditPage, AuditQuery
from phi_guard.infrastructure.archive.cold_archive import SealedColdArchive
from phi_guard.scalability.keyed_lock import KeyedLocks


class InMemoryLogStore:
    """
    Implements AuditWriter, AuditReader and AuditMaintenance.
    Appends for one resource are serialised by that resource's lock; appends for
    different resources never contend. Idempotency keys stay reserved across tier
    migration and are released only when their record is purged.
    """

    def __init__(self, cold_archive: SealedColdArchive) -> None:
        self._cold = cold_archive
        self._hot: Dict[int, AuditRecord] = {}
        self._heads: Dict[str, Tuple[int, str]] = {}
        self._by_key: Dict[str, AuditAck] = {}
        self._by_correlation: Dict[str, List[int]] = {}
        self._locks = KeyedLocks()
        self._ids = itertools.count(1)
        self._subscribers: List["asyncio.Queue[AuditRecord]"] = []

    async def append(self, entry: AuditEntry, timestamp_utc: datetime) -> AuditAck:
        key = f"{entry.resource_type}:{entry.resource_id}"
        dedup = idempotency_key(entry)
        async with self._locks.hold(key):
            existing = self._by_key.get(dedup)
            if existing is not None:
                return existing
            last_sequence, last_hash = self._heads.get(key, (0, GENESIS_HASH))
            record = build_record(
                entry,
                record_id=next(self._ids),
                sequence=last_sequence + 1,
                timestamp_utc=timestamp_utc,
                previous_hash=last_hash,
            )
            self._hot[record.record_id] = record
            self._heads[key] = (record.sequence, record.record_hash)
            self._by_key[dedup] = record.ack
            self._by_correlation.setdefault(entry.correlation_id, []).append(record.record_id)
        for queue in self._subscribers:
            queue.put_nowait(record)
        return record.ack

    async def fetch_page(self, query: AuditQuery, after: Optional[int], limit: int) -> AuditPage:
        hot: List[AuditRecord] = []
        for record in self._hot.values():
            if after is not None and record.record_id <= after:
                continue
            if query.matches(record):
                hot.append(record)
                if len(hot) >= limit:
                    break
        cold = await self._cold.scan(query, after, limit) if query.include_cold else []
        page = sorted(hot + cold, key=lambda r: r.record_id)[:limit]
        next_cursor = page[-1].record_id if len(page) == limit else None
        return AuditPage(records=page, next_cursor=next_cursor)

    async def find_by_correlation_id(self, correlation_id: str) -> Optional[AuditRecord]:
        record_ids = self._by_correlation.get(correlation_id)
        if not record_ids:
            return None
        record_id = record_ids[0]
        record = self._hot.get(record_id)
        if record is not None:
            return record
        return await self._cold.get(record_id)

    def subscribe(self) -> "asyncio.Queue[AuditRecord]":
        queue: "asyncio.Queue[AuditRecord]" = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[AuditRecord]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def migrate_to_cold(self, older_than: datetime) -> int:
        moving = [r for r in self._hot.values() if r.timestamp_utc < older_than]
        await self._cold.put(moving)
        for record in moving:
            del self._hot[record.record_id]
        return len(moving)

    async def purge_expired(
        self,
        older_than: datetime,
        keep: Callable[[AuditRecord], bool],
    ) -> Tuple[int, int]:
        purged: List[AuditRecord] = []
        kept = 0
        for record in list(self._hot.values()):
            if record.timestamp_utc >= older_than:
                continue
            if keep(record):
                kept += 1
            else:
                del self._hot[record.record_id]
                purged.append(record)
        cold_purged, cold_kept = await self._cold.purge(older_than, keep)
        purged.extend(cold_purged)
        for record in purged:
            self._release(record)
        return len(purged), kept + cold_kept

    def _release(self, record: AuditRecord) -> None:
        self._by_key.pop(idempotency_key(record), None)
        record_ids = self._by_correlation.get(record.correlation_id)
        if record_ids is None:
            return
        if record.record_id in record_ids:
            record_ids.remove(record.record_id)
        if not record_ids:
            del self._by_correlation[record.correlation_id]

    def hot_count(self) -> int:
        return len(self._hot)

    def tracked_keys(self) -> int:
        """Idempotency keys currently reserved (one per stored record)."""
        return len(self._by_key)
