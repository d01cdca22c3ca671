"""Immutable, content-free audit recording with bounded retry. No FastAPI."""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from phi_guard.governance.audit_models import AuditAck, AuditEntry
from phi_guard.governance.audit_repository import AuditWriter
from phi_guard.governance.exceptions import LogStoreUnavailableError
from phi_guard.observability.metrics import MetricsCollector
from phi_guard.scalability.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

# Raised to the mediator, which owns the AUDIT_WRITE_FAILURE error type.
WriteFailureHandler = Callable[[AuditEntry, BaseException], Awaitable[None]]


class AuditWriteExhaustedError(Exception):
    """All append attempts failed. Carries the last underlying error."""

    def __init__(self, entry: AuditEntry, cause: BaseException) -> None:
        self.entry = entry
        self.cause = cause
        super().__init__(f"audit append exhausted for {entry.resource_type}:{entry.resource_id}")


class AuditRecorder:
    """
    Writes immutable audit records via the append-only writer.
    Timestamps are UTC and never go backwards for this writer.
    Append failures are retried with bounded exponential backoff; when retries are
    exhausted the failure is escalated as an operational event and re-raised.
    """

    def __init__(
        self,
        writer: AuditWriter,
        *,
        attempts: int = 3,
        backoff_seconds: float = 0.05,
        backoff_max_seconds: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        on_write_failure: Optional[WriteFailureHandler] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._writer = writer
        self._attempts = attempts
        self._backoff = backoff_seconds
        self._backoff_max = backoff_max_seconds
        self._breaker = circuit_breaker
        self._on_write_failure = on_write_failure
        self._metrics = metrics
        self._clock = clock
        self._last_timestamp: Optional[datetime] = None

    def _next_timestamp(self) -> datetime:
        now = self._clock()
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    async def _append_once(self, entry: AuditEntry, timestamp: datetime) -> AuditAck:
        if self._breaker is not None:
            return await self._breaker.call(self._writer.append, entry, timestamp)
        return await self._writer.append(entry, timestamp)

    async def record(self, entry: AuditEntry) -> AuditAck:
        """Persist one entry. Raises AuditWriteExhaustedError when it cannot be made durable."""
        timestamp = self._next_timestamp()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=wait_exponential(multiplier=self._backoff, max=self._backoff_max),
                retry=retry_if_exception_type((LogStoreUnavailableError, CircuitOpenError)),
                reraise=False,
            ):
                with attempt:
                    ack = await self._append_once(entry, timestamp)
        except RetryError as e:
            cause = e.last_attempt.exception()
            await self._escalate(entry, cause)
            raise AuditWriteExhaustedError(entry, cause) from cause
        except Exception as e:
            # Non-retryable store error: equally fatal to the enclosing call.
            await self._escalate(entry, e)
            raise AuditWriteExhaustedError(entry, e) from e

        if self._metrics:
            self._metrics.increment("audit_records_written", category=entry.outcome.value)
        logger.info(
            "audit_recorded",
            extra={
                "action": entry.action.value,
                "outcome": entry.outcome.value,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "record_id": ack.record_id,
                "sequence": ack.sequence,
            },
        )
        return ack

    async def _escalate(self, entry: AuditEntry, cause: BaseException) -> None:
        if self._metrics:
            self._metrics.increment("audit_write_failures", category=entry.action.value)
        logger.error(
            "audit_write_failed",
            extra={
                "action": entry.action.value,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "error": type(cause).__name__,
            },
        )
        if self._on_write_failure is not None:
            try:
                await self._on_write_failure(entry, cause)
            except Exception:
                logger.exception("audit_write_failure_escalation_failed")
