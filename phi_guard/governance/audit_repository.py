"""
Log store protocols. Governance layer depends on these; infrastructure implements them.

AuditWriter is the recorder's whole view of storage: append only, no update or delete.
Maintenance operations (tier migration, retention purge) sit on a separate protocol that
only the retention scheduler receives.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Tuple

from phi_guard.domain.models.resource import ResourceRef
from phi_guard.governance.audit_models import AuditAck, AuditEntry, AuditRecord


@dataclass(frozen=True)
class AuditQuery:
    """Filter for audit history. Omitted fields do not restrict."""

    resource: Optional[ResourceRef] = None
    principal_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    include_cold: bool = True

    def matches(self, record: AuditRecord) -> bool:
        # Reads only the ref, principal and timestamp, so cold-tier index entries qualify too.
        if self.resource is not None and (
            record.resource_type != self.resource.resource_type
            or record.resource_id != self.resource.resource_id
        ):
            return False
        if self.principal_id is not None and record.principal_id != self.principal_id:
            return False
        if self.start is not None and record.timestamp_utc < self.start:
            return False
        if self.end is not None and record.timestamp_utc >= self.end:
            return False
        return True


@dataclass(frozen=True)
class AuditPage:
    records: List[AuditRecord]
    next_cursor: Optional[int]


class AuditWriter(Protocol):
    """Write-once append path."""

    async def append(self, entry: AuditEntry, timestamp_utc: datetime) -> AuditAck:
        """
        Persist entry at the next sequence position of its resource. If a record with
        the same idempotency key (correlation id, principal, action, resource, outcome)
        exists, return its ack without writing. A correlation id reused by any other
        access gets a record of its own.
        """
        ...


class AuditReader(Protocol):
    async def fetch_page(
        self, query: AuditQuery, after: Optional[int], limit: int
    ) -> AuditPage:
        """Records matching query with record_id > after, ascending, at most limit."""
        ...

    async def find_by_correlation_id(self, correlation_id: str) -> Optional[AuditRecord]:
        """Earliest record carrying correlation_id, in either tier."""
        ...

    def subscribe(self) -> "asyncio.Queue[AuditRecord]":
        """Unbounded feed of newly appended records; never blocks writers."""
        ...

    def unsubscribe(self, queue: "asyncio.Queue[AuditRecord]") -> None:
        ...


class AuditMaintenance(Protocol):
    """Operational lifecycle of stored records. Not exposed to the recorder."""

    async def migrate_to_cold(self, older_than: datetime) -> int:
        """Move hot records with timestamp < older_than to the cold tier. Returns count."""
        ...

    async def purge_expired(
        self,
        older_than: datetime,
        keep: Callable[[AuditRecord], bool],
    ) -> Tuple[int, int]:
        """Remove records older than the cutoff unless keep(record). Returns (purged, kept)."""
        ...


class LogStore(AuditWriter, AuditReader, AuditMaintenance, Protocol):
    """Full store surface, used for wiring."""
