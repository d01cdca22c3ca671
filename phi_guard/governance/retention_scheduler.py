"""
Retention & deletion scheduler.

Lifecycle per resource: ACTIVE -> ELIGIBLE_FOR_DISPOSITION -> (ARCHIVED | DELETED).
Disposition order is fixed: deletion record, then the destructive step, then metadata.
A scan is idempotent; re-running it after a crash finishes what the last one started.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Set

from phi_guard.application.interfaces import ArchivingResourceStore, ResourceCatalog, ResourceStore
from phi_guard.domain.models.access import Action, Channel, DispositionReason, Outcome
from phi_guard.domain.models.resource import ResourceMetadata, ResourceRef, ResourceState
from phi_guard.domain.models.retention import DispositionAction, add_years
from phi_guard.governance.alerting import AlertingMonitor
from phi_guard.governance.audit_logger import AuditRecorder, AuditWriteExhaustedError
from phi_guard.governance.audit_models import AuditEntry, AuditRecord
from phi_guard.governance.audit_repository import AuditMaintenance, AuditQuery, AuditReader
from phi_guard.governance.exceptions import (
    LogStoreUnavailableError,
    PolicyNotFoundError,
    RetentionBlockedError,
)
from phi_guard.governance.legal_hold import holds_due_for_review
from phi_guard.observability.metrics import MetricsCollector
from phi_guard.scalability.distributed_lock import DistributedLock
from phi_guard.security.policy_store import CachedPolicySource, PolicySnapshot

logger = logging.getLogger(__name__)

SCAN_LOCK_KEY = "retention-scan"
SCHEDULER_ROLE = "system:retention"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_DISPOSITION_ACTIONS = (Action.PHI_DELETE, Action.PHI_ARCHIVE)


@dataclass
class ScanReport:
    skipped: bool = False
    scanned: int = 0
    became_eligible: int = 0
    disposed: int = 0
    cascaded: int = 0
    blocked: int = 0
    reparented: int = 0
    missing_policy: int = 0
    errors: int = 0
    migrated: int = 0
    audit_purged: int = 0
    audit_kept: int = 0


def disposition_correlation_id(ref: ResourceRef) -> str:
    """Deterministic per resource: a resource is disposed once, under one deletion record."""
    digest = hashlib.sha256(ref.key.encode()).hexdigest()
    return f"disposition.{digest[:40]}"


class RetentionScheduler:
    """
    Batched catalog scan, one scanner per cluster (distributed lock).
    Yields to the event loop between batches so mediated calls are never starved.
    """

    def __init__(
        self,
        *,
        catalog: ResourceCatalog,
        resource_store: ResourceStore,
        recorder: AuditRecorder,
        policy_source: CachedPolicySource,
        reader: AuditReader,
        maintenance: AuditMaintenance,
        lock: DistributedLock,
        identity: str,
        audit_retention_class: str,
        alerts: Optional[AlertingMonitor] = None,
        metrics: Optional[MetricsCollector] = None,
        batch_size: int = 100,
        hot_tier_days: int = 90,
        lock_ttl_seconds: int = 900,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._catalog = catalog
        self._store = resource_store
        self._recorder = recorder
        self._policies = policy_source
        self._reader = reader
        self._maintenance = maintenance
        self._lock = lock
        self._identity = identity
        self._audit_class = audit_retention_class
        self._alerts = alerts
        self._metrics = metrics
        self._batch_size = batch_size
        self._hot_tier_days = hot_tier_days
        self._lock_ttl = lock_ttl_seconds
        self._clock = clock

    async def run_once(self) -> ScanReport:
        async with self._lock.hold(SCAN_LOCK_KEY, self._lock_ttl) as acquired:
            if not acquired:
                logger.info("retention_scan_skipped", extra={"state": "lock_held_elsewhere"})
                return ScanReport(skipped=True)
            return await self._scan()

    async def _scan(self) -> ScanReport:
        report = ScanReport()
        snapshot = await self._policies.snapshot()
        now = self._clock()
        held: Set[str] = set()
        after: Optional[str] = None
        while True:
            batch = await self._catalog.page(after, self._batch_size)
            if not batch:
                break
            for metadata in holds_due_for_review(batch, now):
                logger.info(
                    "legal_hold_review_due",
                    extra={"resource_type": metadata.ref.resource_type, "resource_id": metadata.ref.resource_id},
                )
            for metadata in batch:
                report.scanned += 1
                if metadata.under_hold:
                    held.add(metadata.ref.key)
                if not metadata.is_disposed:
                    await self._process(metadata, snapshot, now, report)
                elif metadata.state == ResourceState.DELETED:
                    # Dependents left behind by an interrupted or interactive delete.
                    await self._resolve_dependents(metadata, False, None, report, {metadata.ref.key})
            after = batch[-1].ref.key
            await asyncio.sleep(0)
        await self._maintain_audit_trail(snapshot, now, held, report)
        logger.info(
            "retention_scan_completed",
            extra={"event": "retention_scan_completed", "outcome": f"disposed={report.disposed}"},
        )
        return report

    async def _process(
        self,
        metadata: ResourceMetadata,
        snapshot: PolicySnapshot,
        now: datetime,
        report: ScanReport,
    ) -> None:
        try:
            effective = snapshot.effective_retention(metadata.retention_class, metadata.created_at, now)
        except PolicyNotFoundError as e:
            report.missing_policy += 1
            self._count("retention_policy_missing", metadata.retention_class)
            logger.warning(
                "retention_policy_missing",
                extra={
                    "resource_type": metadata.ref.resource_type,
                    "resource_id": metadata.ref.resource_id,
                    "error": e.message,
                },
            )
            if self._alerts is not None:
                await self._alerts.report_operational("POLICY_NOT_FOUND", ref=metadata.ref)
            return

        if now < effective.expires_at(metadata.created_at):
            return
        if metadata.state == ResourceState.ACTIVE:
            metadata.transition_to(ResourceState.ELIGIBLE_FOR_DISPOSITION)
            await self._catalog.save(metadata)
            report.became_eligible += 1
            logger.info(
                "resource_eligible_for_disposition",
                extra={
                    "resource_type": metadata.ref.resource_type,
                    "resource_id": metadata.ref.resource_id,
                    "policy_version": effective.version,
                },
            )

        try:
            self._ensure_not_held(metadata)
        except RetentionBlockedError as e:
            # Expected steady state while litigation is open; counted, not escalated.
            report.blocked += 1
            self._count("retention_blocked", metadata.retention_class)
            logger.info(
                "retention_blocked",
                extra={
                    "resource_type": metadata.ref.resource_type,
                    "resource_id": metadata.ref.resource_id,
                    "error": e.message,
                },
            )
            return

        archive = effective.disposition == DispositionAction.ARCHIVE
        await self._dispose(
            metadata, archive, effective.version, DispositionReason.RETENTION_ELAPSED, report, set()
        )

    @staticmethod
    def _ensure_not_held(metadata: ResourceMetadata) -> None:
        if metadata.under_hold:
            raise RetentionBlockedError(f"Legal hold active on {metadata.ref}")

    async def resolve_dependents(self, parent: ResourceMetadata) -> ScanReport:
        """
        Delete or reparent what existed only to support a resource deleted outside the
        scan. Skipped while a scan holds the lock; that scan or the next one picks the
        orphans up.
        """
        report = ScanReport()
        async with self._lock.hold(SCAN_LOCK_KEY, self._lock_ttl) as acquired:
            if not acquired:
                report.skipped = True
                return report
            await self._resolve_dependents(parent, False, None, report, {parent.ref.key})
        return report

    async def _resolve_dependents(
        self,
        parent: ResourceMetadata,
        archive: bool,
        policy_version: Optional[int],
        report: ScanReport,
        visited: Set[str],
    ) -> bool:
        """Returns True once no dependent of parent is left undisposed."""
        for dependent in await self._catalog.dependents_of(parent.ref):
            if dependent.is_disposed or dependent.ref.key in visited:
                continue
            if dependent.under_hold:
                # A held dependent outlives its parent; detach it instead of deleting.
                dependent.supports = None
                await self._catalog.save(dependent)
                report.reparented += 1
                logger.info(
                    "dependent_reparented",
                    extra={"resource_type": dependent.ref.resource_type, "resource_id": dependent.ref.resource_id},
                )
                continue
            if dependent.state == ResourceState.ACTIVE:
                dependent.transition_to(ResourceState.ELIGIBLE_FOR_DISPOSITION)
                await self._catalog.save(dependent)
            if not await self._dispose(dependent, archive, policy_version, DispositionReason.CASCADE, report, visited):
                # The parent stays until every dependent is gone; the next scan retries.
                return False
            report.cascaded += 1
        return True

    async def _prior_disposition(self, ref: ResourceRef) -> Optional[AuditRecord]:
        """The deletion record this scheduler already wrote for ref, if any."""
        query = AuditQuery(resource=ref, principal_id=self._identity)
        after: Optional[int] = None
        while True:
            page = await self._reader.fetch_page(query, after, self._batch_size)
            for record in page.records:
                if (
                    record.action in _DISPOSITION_ACTIONS
                    and record.outcome == Outcome.SUCCESS
                    and record.channel == Channel.SCHEDULER
                ):
                    return record
            if page.next_cursor is None:
                return None
            after = page.next_cursor

    async def _dispose(
        self,
        metadata: ResourceMetadata,
        archive: bool,
        policy_version: Optional[int],
        reason: DispositionReason,
        report: ScanReport,
        visited: Set[str],
    ) -> bool:
        """Dispose dependents first, then the resource. Returns True when disposed."""
        visited.add(metadata.ref.key)
        if not await self._resolve_dependents(metadata, archive, policy_version, report, visited):
            return False

        try:
            prior = await self._prior_disposition(metadata.ref)
        except LogStoreUnavailableError:
            report.errors += 1
            return False
        if prior is not None:
            # Recorded by an interrupted run: finish that disposition, whatever the policy says now.
            archive = prior.action == Action.PHI_ARCHIVE
            policy_version = prior.policy_version
            reason = prior.justification or reason

        if archive and not isinstance(self._store, ArchivingResourceStore):
            report.errors += 1
            logger.error(
                "archive_unsupported",
                extra={"resource_type": metadata.ref.resource_type, "resource_id": metadata.ref.resource_id},
            )
            if self._alerts is not None:
                await self._alerts.report_operational("ARCHIVE_UNSUPPORTED", ref=metadata.ref)
            return False

        action = Action.PHI_ARCHIVE if archive else Action.PHI_DELETE
        if prior is None:
            entry = AuditEntry(
                principal_id=self._identity,
                role=SCHEDULER_ROLE,
                action=action,
                resource_type=metadata.ref.resource_type,
                resource_id=metadata.ref.resource_id,
                outcome=Outcome.SUCCESS,
                channel=Channel.SCHEDULER,
                correlation_id=disposition_correlation_id(metadata.ref),
                policy_version=policy_version,
                justification=reason,
            )
            try:
                await self._recorder.record(entry)
            except AuditWriteExhaustedError:
                # Nothing destroyed without its deletion record; the next scan retries.
                report.errors += 1
                return False

        try:
            await asyncio.shield(self._destroy(metadata, archive))
        except Exception as e:
            report.errors += 1
            logger.error(
                "disposition_failed",
                extra={
                    "resource_type": metadata.ref.resource_type,
                    "resource_id": metadata.ref.resource_id,
                    "error": type(e).__name__,
                },
            )
            return False

        report.disposed += 1
        self._count("retention_disposed", action.value)
        logger.info(
            "resource_disposed",
            extra={
                "action": action.value,
                "resource_type": metadata.ref.resource_type,
                "resource_id": metadata.ref.resource_id,
                "policy_version": policy_version,
                "rule": reason.value,
            },
        )
        return True

    async def _destroy(self, metadata: ResourceMetadata, archive: bool) -> None:
        if archive:
            await self._store.archive(metadata.ref)  # type: ignore[attr-defined]
            metadata.transition_to(ResourceState.ARCHIVED)
        else:
            await self._store.delete(metadata.ref)
            metadata.transition_to(ResourceState.DELETED)
        await self._catalog.save(metadata)

    async def _maintain_audit_trail(
        self,
        snapshot: PolicySnapshot,
        now: datetime,
        held: Set[str],
        report: ScanReport,
    ) -> None:
        """Tier migration, then purge of audit records past their own retention."""
        report.migrated = await self._maintenance.migrate_to_cold(now - timedelta(days=self._hot_tier_days))
        try:
            # Earliest creation date: the longest version ever in effect applies.
            effective = snapshot.effective_retention(self._audit_class, _EPOCH, now)
        except PolicyNotFoundError:
            logger.warning("audit_retention_policy_missing", extra={"rule": self._audit_class})
            if self._alerts is not None:
                await self._alerts.report_operational("POLICY_NOT_FOUND")
            return
        cutoff = add_years(now, -effective.duration_years)
        report.audit_purged, report.audit_kept = await self._maintenance.purge_expired(
            cutoff, lambda record: record.ref.key in held
        )
        if report.audit_purged:
            logger.info("audit_records_purged", extra={"outcome": f"purged={report.audit_purged}"})

    def _count(self, name: str, category: str) -> None:
        if self._metrics:
            self._metrics.increment(name, category=category)

    async def run_forever(self, interval_seconds: float) -> None:
        """Long-lived loop. A failed scan is logged and retried at the next interval."""
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("retention_scan_failed", extra={"error": type(e).__name__})
            await asyncio.sleep(interval_seconds)
