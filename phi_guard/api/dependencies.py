"""FastAPI dependency injection: service container, principal and correlation id."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, HTTPException, Request

from phi_guard.application.access_mediator import AccessMediator
from phi_guard.config.settings import AppSettings, get_settings
from phi_guard.governance.administration import PolicyAdministration, PrincipalAdministration
from phi_guard.governance.alerting import AlertingMonitor, AlertSink, InMemoryAlertSink
from phi_guard.governance.audit_logger import AuditRecorder
from phi_guard.governance.audit_query import AuditQueryService
from phi_guard.governance.audit_repository import LogStore
from phi_guard.governance.legal_hold import LegalHoldService
from phi_guard.governance.retention_scheduler import RetentionScheduler
from phi_guard.infrastructure.archive.cold_archive import SealedColdArchive
from phi_guard.infrastructure.memory.catalog import InMemoryResourceCatalog
from phi_guard.infrastructure.memory.directory import InMemoryPrincipalDirectory
from phi_guard.infrastructure.memory.lock_backend import InMemoryLockBackend
from phi_guard.infrastructure.memory.log_store import InMemoryLogStore
from phi_guard.infrastructure.memory.reconciliation_queue import InMemoryReconciliationQueue
from phi_guard.infrastructure.memory.resource_store import InMemoryResourceStore
from phi_guard.observability.metrics import MetricsCollector
from phi_guard.scalability.circuit_breaker import CircuitBreaker
from phi_guard.scalability.distributed_lock import DistributedLock, LockBackend
from phi_guard.security.authorization import AuthorizationEngine
from phi_guard.security.encryption import EncryptionService
from phi_guard.security.policy_store import CachedPolicySource, PolicyStore

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Every long-lived collaborator, wired once per process."""

    settings: AppSettings
    metrics: MetricsCollector
    policy_store: PolicyStore
    policy_source: CachedPolicySource
    directory: InMemoryPrincipalDirectory
    catalog: InMemoryResourceCatalog
    resource_store: InMemoryResourceStore
    reconciliation: InMemoryReconciliationQueue
    log_store: LogStore
    alert_sink: AlertSink
    monitor: AlertingMonitor
    recorder: AuditRecorder
    engine: AuthorizationEngine
    mediator: AccessMediator
    audit_queries: AuditQueryService
    legal_holds: LegalHoldService
    policy_admin: PolicyAdministration
    principal_admin: PrincipalAdministration
    scheduler: RetentionScheduler
    closeables: tuple = ()


def _build_log_store(settings: AppSettings, sealer: EncryptionService) -> tuple[LogStore, Any]:
    if settings.log_store_backend == "sql":
        from phi_guard.infrastructure.database.log_store_db import SqlLogStore
        from phi_guard.infrastructure.database.session import build_engine, build_session_factory

        engine = build_engine(settings.database_url)
        return SqlLogStore(build_session_factory(engine), sealer), engine
    return InMemoryLogStore(SealedColdArchive(sealer)), None


def _build_lock_backend(settings: AppSettings) -> tuple[LockBackend, Any]:
    if settings.lock_backend == "redis":
        from phi_guard.infrastructure.cache.redis_client import RedisClient

        client = RedisClient(settings.redis_url)
        return client, client
    return InMemoryLockBackend(), None


def _build_alert_sink(settings: AppSettings) -> tuple[AlertSink, Any]:
    if settings.alert_sink_backend == "rabbitmq":
        from phi_guard.infrastructure.messaging.rabbitmq_publisher import RabbitMQAlertSink

        sink = RabbitMQAlertSink(settings.rabbitmq_url, settings.alert_exchange)
        return sink, sink
    return InMemoryAlertSink(), None


def build_container(
    settings: Optional[AppSettings] = None,
    *,
    log_store: Optional[LogStore] = None,
    alert_sink: Optional[AlertSink] = None,
    lock_backend: Optional[LockBackend] = None,
) -> Container:
    """Wire the engine. Explicit collaborators win over the configured backends."""
    settings = settings or get_settings()
    metrics = MetricsCollector()
    closeables = []

    policy_store = PolicyStore(audit_retention_class=settings.audit_retention_class)
    policy_source = CachedPolicySource(
        policy_store,
        ttl_seconds=settings.policy_cache_ttl_seconds,
        attempts=settings.policy_fetch_attempts,
    )
    directory = InMemoryPrincipalDirectory()
    directory.subscribe(lambda _principal_id: policy_source.invalidate())
    catalog = InMemoryResourceCatalog()
    resource_store = InMemoryResourceStore()
    reconciliation = InMemoryReconciliationQueue()

    if log_store is None:
        log_store, closeable = _build_log_store(settings, EncryptionService(settings.encryption_key))
        if closeable is not None:
            closeables.append(closeable)
    if alert_sink is None:
        alert_sink, closeable = _build_alert_sink(settings)
        if closeable is not None:
            closeables.append(closeable)
    if lock_backend is None:
        lock_backend, closeable = _build_lock_backend(settings)
        if closeable is not None:
            closeables.append(closeable)

    monitor = AlertingMonitor(
        log_store,
        alert_sink,
        policy_source=policy_source,
        scheduler_identity=settings.scheduler_identity,
        metrics=metrics,
    )
    recorder = AuditRecorder(
        log_store,
        attempts=settings.audit_write_attempts,
        backoff_seconds=settings.audit_backoff_seconds,
        backoff_max_seconds=settings.audit_backoff_max_seconds,
        circuit_breaker=CircuitBreaker(name="log_store", metrics=metrics),
        on_write_failure=monitor.on_audit_write_failure,
        metrics=metrics,
    )
    engine = AuthorizationEngine(policy_source)

    async def _escalate_reconciliation(item):
        await monitor.report_operational(
            "RECONCILIATION_REQUIRED", ref=item.ref, principal_id=item.principal_id
        )

    scheduler = RetentionScheduler(
        catalog=catalog,
        resource_store=resource_store,
        recorder=recorder,
        policy_source=policy_source,
        reader=log_store,
        maintenance=log_store,
        lock=DistributedLock(lock_backend),
        identity=settings.scheduler_identity,
        audit_retention_class=settings.audit_retention_class,
        alerts=monitor,
        metrics=metrics,
        batch_size=settings.scheduler_batch_size,
        hot_tier_days=settings.hot_tier_days,
        lock_ttl_seconds=settings.scheduler_lock_ttl_seconds,
    )
    mediator = AccessMediator(
        engine=engine,
        recorder=recorder,
        directory=directory,
        catalog=catalog,
        resource_store=resource_store,
        reconciliation=reconciliation,
        metrics=metrics,
        dependency_attempts=settings.policy_fetch_attempts,
        on_reconciliation=_escalate_reconciliation,
        on_deleted=scheduler.resolve_dependents,
    )
    return Container(
        settings=settings,
        metrics=metrics,
        policy_store=policy_store,
        policy_source=policy_source,
        directory=directory,
        catalog=catalog,
        resource_store=resource_store,
        reconciliation=reconciliation,
        log_store=log_store,
        alert_sink=alert_sink,
        monitor=monitor,
        recorder=recorder,
        engine=engine,
        mediator=mediator,
        audit_queries=AuditQueryService(mediator, log_store),
        legal_holds=LegalHoldService(mediator, catalog),
        policy_admin=PolicyAdministration(mediator, policy_store, policy_source),
        principal_admin=PrincipalAdministration(mediator, directory),
        scheduler=scheduler,
        closeables=tuple(closeables),
    )


def get_container(request: Request) -> Container:
    """Container stored on app.state by the lifespan (or by tests)."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        container = build_container()
        request.app.state.container = container
    return container


def get_principal_id(request: Request) -> str:
    """Extract principal_id from request.state (set by middleware)."""
    principal_id = getattr(request.state, "principal_id", None)
    if not principal_id:
        raise HTTPException(status_code=401, detail="X-Principal-ID header is required")
    return principal_id


def get_correlation_id(request: Request) -> str:
    """Extract correlation_id from request.state (set by middleware)."""
    return getattr(request.state, "correlation_id", "") or ""


def get_metrics(container: Container = Depends(get_container)) -> MetricsCollector:
    return container.metrics
