"""
Versioned policy configuration: roles, retention policies, alert rules.

The store is append-only data. Decisions read an immutable PolicySnapshot; engines hold
a cached snapshot whose age is bounded by CachedPolicySource.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from phi_guard.domain.models.alerting import DEFAULT_ALERT_RULES, AlertRule
from phi_guard.domain.models.principal import RoleDefinition
from phi_guard.domain.models.retention import (
    DispositionAction,
    EffectiveRetention,
    RetentionPolicy,
)
from phi_guard.governance.exceptions import PolicyConfigurationError, PolicyNotFoundError
from phi_guard.security.exceptions import PolicyStoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of every policy table at one store version."""

    version: int
    roles: Mapping[str, RoleDefinition]
    retention_history: Mapping[str, Tuple[RetentionPolicy, ...]]
    alert_rules: Tuple[AlertRule, ...]
    taken_at: datetime

    def role(self, name: str) -> Optional[RoleDefinition]:
        return self.roles.get(name)

    def effective_retention(
        self,
        retention_class: str,
        created_at: datetime,
        now: datetime,
    ) -> EffectiveRetention:
        """
        Latest version in effect at `now`. Duration never drops below any version that
        was in effect during [created_at, now], so a shortened policy cannot
        retroactively cut retention that was already owed.
        """
        history = self.retention_history.get(retention_class, ())
        in_effect = [p for p in history if p.effective_from <= now]
        if not in_effect:
            raise PolicyNotFoundError(
                f"No retention policy for class '{retention_class}'"
            )
        duration = 0
        for i, policy in enumerate(in_effect):
            next_start = in_effect[i + 1].effective_from if i + 1 < len(in_effect) else None
            if next_start is None or next_start > created_at:
                duration = max(duration, policy.duration_years)
        return EffectiveRetention(policy=in_effect[-1], duration_years=duration)


class PolicyStore:
    """
    In-memory, append-only policy tables. Every publish bumps the store version.
    Changes are made through PolicyAdministration so they are mediated and audited.
    """

    def __init__(
        self,
        *,
        audit_retention_class: str = "audit-record",
        alert_rules: Iterable[AlertRule] = DEFAULT_ALERT_RULES,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._audit_class = audit_retention_class
        self._clock = clock
        self._version = 0
        self._roles: Dict[str, List[RoleDefinition]] = {}
        self._retention: Dict[str, List[RetentionPolicy]] = {}
        self._alert_rules: Tuple[AlertRule, ...] = tuple(alert_rules)

    @property
    def version(self) -> int:
        return self._version

    @property
    def audit_retention_class(self) -> str:
        return self._audit_class

    def publish_role(
        self,
        name: str,
        permissions: Iterable[str],
        field_grants: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> RoleDefinition:
        """Append a new version of role `name`. Earlier versions are kept."""
        history = self._roles.setdefault(name, [])
        grants: Dict[str, FrozenSet[str]] = {
            rtype: frozenset(fields) for rtype, fields in (field_grants or {}).items()
        }
        role = RoleDefinition(
            name=name,
            version=len(history) + 1,
            permissions=frozenset(permissions),
            field_grants=MappingProxyType(grants),
        )
        history.append(role)
        self._version += 1
        logger.info("role_published", extra={"event": "role_published", "policy_version": self._version})
        return role

    def role_history(self, name: str) -> Tuple[RoleDefinition, ...]:
        return tuple(self._roles.get(name, ()))

    def publish_retention_policy(
        self,
        retention_class: str,
        duration_years: int,
        disposition: DispositionAction,
        effective_from: Optional[datetime] = None,
    ) -> RetentionPolicy:
        """
        Append a new version for retention_class. The audit-record class must retain
        at least as long as the longest resource class it documents.
        """
        if duration_years < 1:
            raise PolicyConfigurationError("duration_years must be >= 1")
        self._check_audit_covers(retention_class, duration_years)
        history = self._retention.setdefault(retention_class, [])
        effective = effective_from or self._clock()
        if history and effective < history[-1].effective_from:
            raise PolicyConfigurationError(
                f"Policy versions for '{retention_class}' must be appended in effective order"
            )
        policy = RetentionPolicy(
            retention_class=retention_class,
            version=len(history) + 1,
            duration_years=duration_years,
            disposition=disposition,
            effective_from=effective,
        )
        history.append(policy)
        self._version += 1
        logger.info(
            "retention_policy_published",
            extra={"event": "retention_policy_published", "policy_version": policy.version},
        )
        return policy

    def _check_audit_covers(self, retention_class: str, duration_years: int) -> None:
        if retention_class == self._audit_class:
            longest = max(
                (h[-1].duration_years for c, h in self._retention.items() if c != self._audit_class and h),
                default=0,
            )
            if duration_years < longest:
                raise PolicyConfigurationError(
                    f"Audit retention ({duration_years}y) shorter than longest resource retention ({longest}y)"
                )
            return
        audit = self._retention.get(self._audit_class)
        if audit and duration_years > audit[-1].duration_years:
            raise PolicyConfigurationError(
                f"Retention for '{retention_class}' ({duration_years}y) exceeds audit retention "
                f"({audit[-1].duration_years}y)"
            )

    def retention_history(self, retention_class: str) -> Tuple[RetentionPolicy, ...]:
        return tuple(self._retention.get(retention_class, ()))

    def publish_alert_rules(self, rules: Iterable[AlertRule]) -> Tuple[AlertRule, ...]:
        self._alert_rules = tuple(rules)
        self._version += 1
        return self._alert_rules

    async def snapshot(self) -> PolicySnapshot:
        return PolicySnapshot(
            version=self._version,
            roles=MappingProxyType({name: h[-1] for name, h in self._roles.items() if h}),
            retention_history=MappingProxyType({c: tuple(h) for c, h in self._retention.items()}),
            alert_rules=self._alert_rules,
            taken_at=self._clock(),
        )


class CachedPolicySource:
    """
    Per-engine snapshot cache with bounded staleness. A revoked permission stops being
    honoured at most ttl_seconds after the change, or immediately after invalidate()
    (wired to the principal directory's role-change notification).
    Fetch failures are retried with bounded backoff, then surfaced as
    PolicyStoreUnavailableError.
    """

    def __init__(
        self,
        store: PolicyStore,
        *,
        ttl_seconds: float = 5.0,
        attempts: int = 3,
        backoff_seconds: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._attempts = attempts
        self._backoff = backoff_seconds
        self._clock = clock
        self._cached: Optional[PolicySnapshot] = None
        self._fetched_at: Optional[float] = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def invalidate(self) -> None:
        self._cached = None
        self._fetched_at = None

    def _fresh(self) -> Optional[PolicySnapshot]:
        if self._fetched_at is None or self._clock() - self._fetched_at >= self._ttl:
            return None
        return self._cached

    async def snapshot(self) -> PolicySnapshot:
        cached = self._fresh()
        if cached is not None:
            return cached
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=wait_exponential(multiplier=self._backoff, max=1.0),
                retry=retry_if_exception_type((PolicyStoreUnavailableError, ConnectionError)),
            ):
                with attempt:
                    snapshot = await self._store.snapshot()
        except RetryError as e:
            raise PolicyStoreUnavailableError("Policy store unreachable") from e.last_attempt.exception()
        self._cached = snapshot
        self._fetched_at = self._clock()
        return snapshot
