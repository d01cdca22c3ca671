"""
Access mediator: the single sanctioned entry point to protected resources.

Every call produces exactly one audit record: denied, success or failure. The record is
written on the critical path before the caller sees a result or an error.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, Mapping, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from phi_guard.application.exceptions import (
    AuditWriteFailureError,
    OperationTimeoutError,
    ResourceConflictError,
    ServiceUnavailableError,
)
from phi_guard.application.interfaces import (
    PrincipalDirectory,
    ResourceCatalog,
    ResourceStore,
    TransactionalResourceStore,
)
from phi_guard.application.reconciliation import ReconciliationItem, ReconciliationQueue
from phi_guard.core.context import correlation_id_ctx
from phi_guard.domain.models.access import Action, Channel, FailureCode, Outcome
from phi_guard.domain.models.principal import Principal
from phi_guard.domain.models.resource import (
    ResourceMetadata,
    ResourceRef,
    ResourceState,
    validate_reference,
)
from phi_guard.governance.audit_logger import AuditRecorder, AuditWriteExhaustedError
from phi_guard.governance.audit_models import AuditAck, AuditEntry
from phi_guard.governance.exceptions import RetentionBlockedError
from phi_guard.observability.metrics import MetricsCollector
from phi_guard.security.authorization import (
    AuthorizationDecision,
    AuthorizationEngine,
    ResourceDescriptor,
)
from phi_guard.security.exceptions import AccessDeniedError, PolicyStoreUnavailableError

T = TypeVar("T")

_UNREACHABLE = (ConnectionError, TimeoutError)


@dataclass(frozen=True)
class AccessGrant:
    """What an operation receives: the target, the granted field set, and a store handle."""

    ref: ResourceRef
    fields: FrozenSet[str]
    store: ResourceStore
    principal_id: str
    correlation_id: str


OperationFn = Callable[[AccessGrant], Awaitable[T]]
ReconciliationHandler = Callable[[ReconciliationItem], Awaitable[None]]
DeletionHandler = Callable[[ResourceMetadata], Awaitable[Any]]


def _failure_code(exc: BaseException) -> FailureCode:
    if isinstance(exc, (asyncio.TimeoutError, OperationTimeoutError)):
        return FailureCode.TIMEOUT
    if isinstance(exc, asyncio.CancelledError):
        return FailureCode.CANCELLED
    return FailureCode.OPERATION_ERROR


class AccessMediator:
    """
    Step order, no exceptions:
    1. decide; 2. denied -> record denied, raise AccessDeniedError, fn never runs;
    3. allowed -> run fn with the granted fields only; 4. record success/failure, then
    return or propagate.

    Audit write failure is fatal: transactional stores roll back, other stores flag the
    call for reconciliation. Either way the caller gets AuditWriteFailureError.
    """

    def __init__(
        self,
        *,
        engine: AuthorizationEngine,
        recorder: AuditRecorder,
        directory: PrincipalDirectory,
        catalog: ResourceCatalog,
        resource_store: ResourceStore,
        reconciliation: ReconciliationQueue,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
        dependency_attempts: int = 3,
        dependency_backoff_seconds: float = 0.05,
        on_reconciliation: Optional[ReconciliationHandler] = None,
        on_deleted: Optional[DeletionHandler] = None,
    ) -> None:
        self._engine = engine
        self._recorder = recorder
        self._directory = directory
        self._catalog = catalog
        self._store = resource_store
        self._reconciliation = reconciliation
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)
        self._attempts = dependency_attempts
        self._backoff = dependency_backoff_seconds
        self._on_reconciliation = on_reconciliation
        self._on_deleted = on_deleted

    @property
    def catalog(self) -> ResourceCatalog:
        return self._catalog

    async def mediate(
        self,
        principal_id: str,
        action: Action,
        ref: ResourceRef,
        fn: OperationFn[T],
        *,
        requested_fields: Iterable[str] = (),
        correlation_id: Optional[str] = None,
        channel: Channel = Channel.API,
        timeout: Optional[float] = None,
    ) -> T:
        validate_reference(principal_id, "principal_id")
        correlation_id = correlation_id or correlation_id_ctx.get() or str(uuid.uuid4())
        started = time.monotonic()

        # Step 1: Authorization decision (dependencies retried with bounded backoff)
        try:
            decision = await self._decide(principal_id, action, ref, requested_fields)
        except ServiceUnavailableError:
            await self._write(
                AuditEntry(
                    principal_id=principal_id,
                    action=action,
                    resource_type=ref.resource_type,
                    resource_id=ref.resource_id,
                    outcome=Outcome.DENIED,
                    failure_code=FailureCode.POLICY_UNAVAILABLE,
                    channel=channel,
                    correlation_id=correlation_id,
                )
            )
            self._count("decisions", Outcome.DENIED.value)
            raise

        # Step 2: Denied: record and stop; fn is never invoked
        if not decision.allowed:
            await self._write(self._entry(decision, Outcome.DENIED, decision.denial_reason, channel, correlation_id))
            self._count("decisions", Outcome.DENIED.value)
            self._logger.info(
                "access_denied",
                extra={
                    "action": action.value,
                    "resource_type": ref.resource_type,
                    "resource_id": ref.resource_id,
                    "failure_code": decision.denial_reason.value if decision.denial_reason else None,
                },
            )
            raise AccessDeniedError()

        # Steps 3 and 4: Run the operation, then record its outcome
        if isinstance(self._store, TransactionalResourceStore):
            result = await self._run_transactional(decision, fn, channel, correlation_id, timeout)
        else:
            result = await self._run_direct(decision, fn, channel, correlation_id, timeout)
        self._count("decisions", Outcome.SUCCESS.value)
        if self._metrics:
            self._metrics.observe_latency(
                "mediate_latency_ms", (time.monotonic() - started) * 1000, operation=action.value
            )
        return result

    async def _decide(
        self,
        principal_id: str,
        action: Action,
        ref: ResourceRef,
        requested_fields: Iterable[str],
    ) -> AuthorizationDecision:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=wait_exponential(multiplier=self._backoff, max=1.0),
                retry=retry_if_exception_type(_UNREACHABLE),
            ):
                with attempt:
                    principal: Optional[Principal] = await self._directory.get_principal(principal_id)
                    metadata = await self._catalog.get(ref)
                    descriptor = ResourceDescriptor(
                        ref=ref,
                        exists=metadata is not None and not metadata.is_disposed,
                        subject_id=metadata.subject_id if metadata is not None else None,
                    )
                    return await self._engine.decide(
                        principal, action, descriptor, requested_fields, principal_id=principal_id
                    )
        except PolicyStoreUnavailableError as e:
            # CachedPolicySource has already retried.
            self._logger.error(
                "decision_dependencies_unavailable",
                extra={"action": action.value, "error": type(e).__name__},
            )
            raise ServiceUnavailableError() from e
        except RetryError as e:
            self._logger.error(
                "decision_dependencies_unavailable",
                extra={"action": action.value, "error": type(e.last_attempt.exception()).__name__},
            )
            raise ServiceUnavailableError() from e.last_attempt.exception()
        raise ServiceUnavailableError()  # pragma: no cover - AsyncRetrying always yields

    def _entry(
        self,
        decision: AuthorizationDecision,
        outcome: Outcome,
        failure_code: Optional[FailureCode],
        channel: Channel,
        correlation_id: str,
    ) -> AuditEntry:
        return AuditEntry(
            principal_id=decision.principal_id,
            role=decision.role,
            action=decision.action,
            resource_type=decision.ref.resource_type,
            resource_id=decision.ref.resource_id,
            outcome=outcome,
            failure_code=failure_code,
            channel=channel,
            correlation_id=correlation_id,
        )

    async def _write(self, entry: AuditEntry) -> AuditAck:
        """Durable write shielded from caller cancellation. Raises AuditWriteFailureError."""
        try:
            return await asyncio.shield(self._recorder.record(entry))
        except AuditWriteExhaustedError as e:
            raise AuditWriteFailureError() from e.cause

    async def _invoke(self, fn: OperationFn[T], grant: AccessGrant, timeout: Optional[float]) -> T:
        if timeout is None:
            return await fn(grant)
        try:
            return await asyncio.wait_for(fn(grant), timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError("Operation timed out") from e

    def _grant(self, decision: AuthorizationDecision, store: ResourceStore, correlation_id: str) -> AccessGrant:
        return AccessGrant(
            ref=decision.ref,
            fields=decision.granted_fields,
            store=store,
            principal_id=decision.principal_id,
            correlation_id=correlation_id,
        )

    async def _record_failure(
        self,
        decision: AuthorizationDecision,
        exc: BaseException,
        channel: Channel,
        correlation_id: str,
    ) -> None:
        code = _failure_code(exc)
        self._count("decisions", Outcome.FAILURE.value)
        self._logger.warning(
            "access_failed",
            extra={
                "action": decision.action.value,
                "resource_type": decision.ref.resource_type,
                "resource_id": decision.ref.resource_id,
                "failure_code": code.value,
            },
        )
        await self._write(self._entry(decision, Outcome.FAILURE, code, channel, correlation_id))

    async def _run_transactional(
        self,
        decision: AuthorizationDecision,
        fn: OperationFn[T],
        channel: Channel,
        correlation_id: str,
        timeout: Optional[float],
    ) -> T:
        store: TransactionalResourceStore = self._store  # type: ignore[assignment]
        # Any exception leaving this block rolls the store back, including a failed audit write.
        async with store.transaction() as tx:
            try:
                result = await self._invoke(fn, self._grant(decision, tx, correlation_id), timeout)
            except BaseException as e:
                await self._record_failure(decision, e, channel, correlation_id)
                raise
            await self._write(self._entry(decision, Outcome.SUCCESS, None, channel, correlation_id))
        return result

    async def _run_direct(
        self,
        decision: AuthorizationDecision,
        fn: OperationFn[T],
        channel: Channel,
        correlation_id: str,
        timeout: Optional[float],
    ) -> T:
        try:
            result = await self._invoke(fn, self._grant(decision, self._store, correlation_id), timeout)
        except BaseException as e:
            await self._record_failure(decision, e, channel, correlation_id)
            raise
        try:
            await self._write(self._entry(decision, Outcome.SUCCESS, None, channel, correlation_id))
        except AuditWriteFailureError as e:
            # The store already applied the operation and cannot undo it.
            item = ReconciliationItem(
                correlation_id=correlation_id,
                principal_id=decision.principal_id,
                action=decision.action,
                ref=decision.ref,
                outcome=Outcome.SUCCESS,
                flagged_at=datetime.now(timezone.utc),
            )
            await self._reconciliation.flag(item)
            if self._on_reconciliation is not None:
                await self._on_reconciliation(item)
            self._logger.error(
                "reconciliation_required",
                extra={
                    "action": decision.action.value,
                    "resource_type": decision.ref.resource_type,
                    "resource_id": decision.ref.resource_id,
                },
            )
            raise AuditWriteFailureError(reconciliation_required=True) from e.__cause__
        return result

    def _count(self, name: str, category: str) -> None:
        if self._metrics:
            self._metrics.increment(name, category=category)

    # ------------------------------------------------------------------
    # Resource store operations
    # ------------------------------------------------------------------

    async def read(
        self,
        principal_id: str,
        ref: ResourceRef,
        fields: Iterable[str],
        *,
        action: Action = Action.PHI_READ,
        **kwargs: Any,
    ) -> Mapping[str, Any]:
        """Read only the granted subset of `fields`. action may be PHI_EXPORT or SUBJECT_READ."""

        async def _read(grant: AccessGrant) -> Mapping[str, Any]:
            if not grant.fields:
                return {}
            return await grant.store.read(grant.ref, grant.fields)

        return await self.mediate(principal_id, action, ref, _read, requested_fields=fields, **kwargs)

    async def write(
        self,
        principal_id: str,
        ref: ResourceRef,
        data: Mapping[str, Any],
        **kwargs: Any,
    ) -> None:
        async def _write(grant: AccessGrant) -> None:
            await grant.store.write(grant.ref, data)

        await self.mediate(principal_id, Action.PHI_WRITE, ref, _write, **kwargs)

    async def create(
        self,
        principal_id: str,
        ref: ResourceRef,
        data: Mapping[str, Any],
        *,
        retention_class: str,
        subject_id: Optional[str] = None,
        supports: Optional[ResourceRef] = None,
        created_at: Optional[datetime] = None,
        **kwargs: Any,
    ) -> ResourceMetadata:
        """Write a new resource; its metadata is catalogued only once the access is recorded."""

        async def _create(grant: AccessGrant) -> None:
            if await self._catalog.get(grant.ref) is not None:
                raise ResourceConflictError(f"Resource already exists: {grant.ref}")
            await grant.store.write(grant.ref, data)

        await self.mediate(principal_id, Action.PHI_CREATE, ref, _create, **kwargs)
        metadata = ResourceMetadata(
            ref=ref,
            created_at=created_at or datetime.now(timezone.utc),
            retention_class=retention_class,
            subject_id=subject_id,
            owner_id=principal_id,
            supports=supports,
        )
        await self._catalog.add(metadata)
        return metadata

    async def delete(self, principal_id: str, ref: ResourceRef, **kwargs: Any) -> None:
        """
        Interactive destructive delete. Refused while a legal hold is active.
        Resources that existed only to support this one are handed to on_deleted.
        """

        async def _delete(grant: AccessGrant) -> None:
            metadata = await self._catalog.get(grant.ref)
            if metadata is not None and metadata.under_hold:
                raise RetentionBlockedError(f"Legal hold active on {grant.ref}")
            await grant.store.delete(grant.ref)

        await self.mediate(principal_id, Action.PHI_DELETE, ref, _delete, **kwargs)
        metadata = await self._catalog.get(ref)
        if metadata is not None and not metadata.is_disposed:
            metadata.transition_to(ResourceState.DELETED)
            await self._catalog.save(metadata)
            if self._on_deleted is not None:
                await self._on_deleted(metadata)
