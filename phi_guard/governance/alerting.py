"""
Alerting monitor: consumes the log store's record stream and evaluates declarative rules.

Runs beside the access path, never on it. Windows are measured on record timestamps so
evaluation does not depend on how far the consumer lags behind the writers.
"""

import asyncio
import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Sequence, Tuple

from phi_guard.domain.models.access import Outcome
from phi_guard.domain.models.alerting import AlertKind, AlertRule
from phi_guard.domain.models.resource import ResourceRef
from phi_guard.governance.audit_models import AuditEntry, AuditRecord
from phi_guard.governance.audit_repository import AuditReader
from phi_guard.observability.metrics import MetricsCollector
from phi_guard.security.exceptions import PolicyStoreUnavailableError
from phi_guard.security.policy_store import CachedPolicySource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alert:
    """References only. No resource content ever reaches a sink."""

    alert_id: str
    rule: str
    kind: AlertKind
    raised_at: datetime
    principal_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    count: int = 1
    code: Optional[str] = None
    record_ids: Tuple[int, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "rule": self.rule,
            "kind": self.kind.value,
            "raised_at": self.raised_at.isoformat(),
            "principal_id": self.principal_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "count": self.count,
            "code": self.code,
            "record_ids": list(self.record_ids),
        }


class AlertSink(Protocol):
    async def send(self, alert: Alert) -> None:
        ...


class InMemoryAlertSink:
    """Collects alerts in a list. Used in tests and as the default local sink."""

    def __init__(self) -> None:
        self.alerts: List[Alert] = []

    async def send(self, alert: Alert) -> None:
        self.alerts.append(alert)

    def of_kind(self, kind: AlertKind) -> List[Alert]:
        return [a for a in self.alerts if a.kind == kind]


class AlertingMonitor:
    """
    Sliding windows for DENIED_BURST, tumbling windows with a trailing mean for
    VOLUME_BASELINE, and a per-record check for UNAUTHORIZED_DELETE.
    Rules come from the policy snapshot; the last good rule set is reused while the
    policy store is unreachable. Window state for principals that have gone quiet is
    evicted every sweep_every records, so memory follows active principals only.
    """

    def __init__(
        self,
        reader: AuditReader,
        sink: AlertSink,
        *,
        policy_source: CachedPolicySource,
        scheduler_identity: str,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sweep_every: int = 256,
    ) -> None:
        self._reader = reader
        self._sink = sink
        self._policies = policy_source
        self._scheduler_identity = scheduler_identity
        self._metrics = metrics
        self._clock = clock
        self._rules: Tuple[AlertRule, ...] = ()
        self._bursts: Dict[Tuple[str, str], Deque[AuditRecord]] = defaultdict(deque)
        self._volumes: Dict[Tuple[str, str], Dict[int, int]] = defaultdict(dict)
        self._volume_fired: Dict[Tuple[str, str], int] = {}
        self._sweep_every = sweep_every
        self._evaluated = 0
        self._queue: Optional["asyncio.Queue[AuditRecord]"] = None
        self._task: Optional[asyncio.Task] = None

    async def _current_rules(self) -> Tuple[AlertRule, ...]:
        try:
            snapshot = await self._policies.snapshot()
            self._rules = snapshot.alert_rules
        except PolicyStoreUnavailableError:
            logger.warning("alert_rules_stale")
        return self._rules

    async def evaluate(self, record: AuditRecord) -> List[Alert]:
        """Apply every rule to one record; emit and return the alerts raised."""
        raised: List[Alert] = []
        for rule in await self._current_rules():
            if not rule.matches_action(record.action):
                continue
            alert: Optional[Alert] = None
            if rule.kind == AlertKind.DENIED_BURST:
                alert = self._denied_burst(rule, record)
            elif rule.kind == AlertKind.UNAUTHORIZED_DELETE:
                alert = self._unauthorized_delete(rule, record)
            elif rule.kind == AlertKind.VOLUME_BASELINE:
                alert = self._volume_baseline(rule, record)
            if alert is not None:
                raised.append(alert)
        for alert in raised:
            await self._emit(alert)
        self._evaluated += 1
        if self._evaluated % self._sweep_every == 0:
            self.evict_idle(record.timestamp_utc)
        return raised

    def _new_alert(self, rule: AlertRule, record: AuditRecord, count: int, record_ids: Sequence[int]) -> Alert:
        return Alert(
            alert_id=str(uuid.uuid4()),
            rule=rule.name,
            kind=rule.kind,
            raised_at=self._clock(),
            principal_id=record.principal_id,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
            count=count,
            record_ids=tuple(record_ids),
        )

    def _denied_burst(self, rule: AlertRule, record: AuditRecord) -> Optional[Alert]:
        if record.outcome != Outcome.DENIED:
            return None
        key = (rule.name, record.principal_id)
        window = self._bursts[key]
        window.append(record)
        horizon = record.timestamp_utc.timestamp() - rule.window_seconds
        while window and window[0].timestamp_utc.timestamp() <= horizon:
            window.popleft()
        if len(window) < rule.threshold:
            return None
        alert = self._new_alert(rule, record, len(window), [r.record_id for r in window])
        # Restart the window so one burst raises one alert.
        del self._bursts[key]
        return alert

    def _unauthorized_delete(self, rule: AlertRule, record: AuditRecord) -> Optional[Alert]:
        if record.outcome == Outcome.DENIED or record.principal_id == self._scheduler_identity:
            return None
        return self._new_alert(rule, record, 1, [record.record_id])

    def _volume_baseline(self, rule: AlertRule, record: AuditRecord) -> Optional[Alert]:
        if record.outcome != Outcome.SUCCESS:
            return None
        key = (rule.name, record.principal_id)
        buckets = self._volumes[key]
        bucket = int(record.timestamp_utc.timestamp() // rule.window_seconds)
        buckets[bucket] = buckets.get(bucket, 0) + 1
        for stale in [b for b in buckets if b < bucket - rule.baseline_windows]:
            del buckets[stale]
        previous = [buckets.get(bucket - i, 0) for i in range(1, rule.baseline_windows + 1)]
        baseline = sum(previous) / len(previous) if previous else 0.0
        limit = max(rule.threshold, rule.multiplier * baseline)
        if buckets[bucket] <= limit or self._volume_fired.get(key) == bucket:
            return None
        self._volume_fired[key] = bucket
        return self._new_alert(rule, record, buckets[bucket], [record.record_id])

    def evict_idle(self, as_of: datetime) -> int:
        """
        Drop window state that can no longer influence an alert at as_of (a record
        timestamp). Returns the number of (rule, principal) entries removed.
        """
        rules = {rule.name: rule for rule in self._rules}
        now = as_of.timestamp()
        evicted = 0
        for key, window in list(self._bursts.items()):
            rule = rules.get(key[0])
            if rule is None or not window or window[-1].timestamp_utc.timestamp() <= now - rule.window_seconds:
                del self._bursts[key]
                evicted += 1
        for key, buckets in list(self._volumes.items()):
            rule = rules.get(key[0])
            if rule is not None:
                current = int(now // rule.window_seconds)
                for stale in [b for b in buckets if b < current - rule.baseline_windows]:
                    del buckets[stale]
            if rule is None or not buckets:
                del self._volumes[key]
                evicted += 1
        for key, bucket in list(self._volume_fired.items()):
            rule = rules.get(key[0])
            if rule is None or bucket < int(now // rule.window_seconds):
                del self._volume_fired[key]
        return evicted

    def tracked_windows(self) -> int:
        """(rule, principal) entries currently holding window state."""
        return len(self._bursts) + len(self._volumes) + len(self._volume_fired)

    async def report_operational(
        self,
        code: str,
        *,
        ref: Optional[ResourceRef] = None,
        principal_id: Optional[str] = None,
    ) -> Alert:
        """Operational event: audit write failure, missing policy, reconciliation required."""
        alert = Alert(
            alert_id=str(uuid.uuid4()),
            rule="operational",
            kind=AlertKind.OPERATIONAL,
            raised_at=self._clock(),
            principal_id=principal_id,
            resource_type=ref.resource_type if ref else None,
            resource_id=ref.resource_id if ref else None,
            code=code,
        )
        await self._emit(alert)
        return alert

    async def on_audit_write_failure(self, entry: AuditEntry, cause: BaseException) -> None:
        """AuditRecorder escalation hook."""
        await self.report_operational(
            "AUDIT_WRITE_FAILURE", ref=entry.ref, principal_id=entry.principal_id
        )

    async def _emit(self, alert: Alert) -> None:
        if self._metrics:
            self._metrics.increment("alerts_raised", category=alert.kind.value)
        logger.warning(
            "alert_raised",
            extra={
                "rule": alert.rule,
                "resource_type": alert.resource_type,
                "resource_id": alert.resource_id,
                "failure_code": alert.code,
            },
        )
        try:
            await self._sink.send(alert)
        except Exception as e:
            # A sink outage must never reach the access path.
            logger.error("alert_delivery_failed", extra={"rule": alert.rule, "error": type(e).__name__})

    # ------------------------------------------------------------------
    # Stream consumption
    # ------------------------------------------------------------------

    def attach(self) -> "asyncio.Queue[AuditRecord]":
        if self._queue is None:
            self._queue = self._reader.subscribe()
        return self._queue

    def detach(self) -> None:
        if self._queue is not None:
            self._reader.unsubscribe(self._queue)
            self._queue = None

    async def run(self) -> None:
        """Consume the record stream until cancelled."""
        queue = self.attach()
        try:
            while True:
                record = await queue.get()
                await self.evaluate(record)
        finally:
            self.detach()

    async def drain(self) -> int:
        """Evaluate whatever is queued right now. Returns the number of records processed."""
        if self._queue is None:
            return 0
        processed = 0
        while not self._queue.empty():
            await self.evaluate(self._queue.get_nowait())
            processed += 1
        return processed

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="alerting-monitor")
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
