"""Cold audit tier: append-only, sealed blobs keyed by record id."""

import bisect
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from phi_guard.governance.audit_models import AuditRecord, StorageTier
from phi_guard.governance.audit_repository import AuditQuery
from phi_guard.security.encryption import EncryptionService


@dataclass(frozen=True)
class ColdIndexEntry:
    """Plaintext lookup columns kept beside each sealed blob. Enough for AuditQuery.matches."""

    record_id: int
    resource_type: str
    resource_id: str
    principal_id: str
    timestamp_utc: datetime


class SealedColdArchive:
    """
    Records leaving the hot tier are sealed with Fernet and kept until their own
    retention expires. Nothing here rewrites a record; tier is metadata outside the hash.
    Scans filter on the plaintext index and unseal only the records they return.
    """

    def __init__(self, sealer: EncryptionService) -> None:
        self._sealer = sealer
        self._blobs: Dict[int, bytes] = {}
        self._index: Dict[int, ColdIndexEntry] = {}
        self._order: List[int] = []

    def __len__(self) -> int:
        return len(self._blobs)

    async def put(self, records: Iterable[AuditRecord]) -> int:
        count = 0
        for record in records:
            if record.record_id in self._blobs:
                continue
            cold = replace(record, tier=StorageTier.COLD)
            self._blobs[record.record_id] = self._sealer.seal(cold.to_dict())
            self._index[record.record_id] = ColdIndexEntry(
                record_id=record.record_id,
                resource_type=record.resource_type,
                resource_id=record.resource_id,
                principal_id=record.principal_id,
                timestamp_utc=record.timestamp_utc,
            )
            bisect.insort(self._order, record.record_id)
            count += 1
        return count

    def _unseal(self, record_id: int) -> AuditRecord:
        return AuditRecord.from_dict(self._sealer.unseal(self._blobs[record_id]))

    async def get(self, record_id: int) -> Optional[AuditRecord]:
        if record_id not in self._blobs:
            return None
        return self._unseal(record_id)

    async def scan(self, query: AuditQuery, after: Optional[int], limit: int) -> List[AuditRecord]:
        start = bisect.bisect_right(self._order, after) if after is not None else 0
        out: List[AuditRecord] = []
        for record_id in self._order[start:]:
            if not query.matches(self._index[record_id]):
                continue
            out.append(self._unseal(record_id))
            if len(out) >= limit:
                break
        return out

    async def purge(
        self,
        older_than: datetime,
        keep: Callable[[AuditRecord], bool],
    ) -> Tuple[List[AuditRecord], int]:
        """Returns the purged records and the number kept."""
        purged: List[AuditRecord] = []
        kept = 0
        for record_id in [rid for rid in self._order if self._index[rid].timestamp_utc < older_than]:
            record = self._unseal(record_id)
            if keep(record):
                kept += 1
                continue
            del self._blobs[record_id]
            del self._index[record_id]
            purged.append(record)
        if purged:
            gone = {r.record_id for r in purged}
            self._order = [rid for rid in self._order if rid not in gone]
        return purged, kept
