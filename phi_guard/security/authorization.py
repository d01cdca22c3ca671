"""Authorization decisions: role-based, minimum-necessary, fail closed. No FastAPI."""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from phi_guard.domain.models.access import Action, FailureCode, rule_for
from phi_guard.domain.models.principal import Principal, RoleDefinition
from phi_guard.domain.models.resource import ResourceRef
from phi_guard.security.policy_store import CachedPolicySource, PolicySnapshot


@dataclass(frozen=True)
class ResourceDescriptor:
    """What the engine may know about the target: its reference and catalog facts."""

    ref: ResourceRef
    exists: bool = True
    subject_id: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationDecision:
    """
    Transient: flows from the engine to the recorder within one mediated call.
    role is the role-at-time-of-action label recorded on the audit record.
    """

    principal_id: str
    action: Action
    ref: ResourceRef
    requested_fields: FrozenSet[str]
    allowed: bool
    granted_fields: FrozenSet[str]
    denial_reason: Optional[FailureCode]
    role: str
    policy_version: int


def _role_label(roles: Iterable[RoleDefinition]) -> str:
    return ",".join(sorted(r.label for r in roles))


def evaluate(
    snapshot: PolicySnapshot,
    principal: Optional[Principal],
    principal_id: str,
    action: Action,
    resource: ResourceDescriptor,
    requested_fields: Iterable[str] = (),
) -> AuthorizationDecision:
    """
    Pure decision against one snapshot.

    The full evaluation runs before the existence check so a missing resource costs
    the same as a permission denial; both surface to callers as ACCESS_DENIED.
    """
    requested = frozenset(requested_fields)
    rule = rule_for(action)
    roles = []
    if principal is not None:
        roles = [r for r in (snapshot.role(name) for name in principal.roles) if r is not None]
    granting = [r for r in roles if rule.permission in r.permissions]

    entitled: FrozenSet[str] = frozenset()
    for role in granting:
        entitled = entitled | role.fields_for(resource.ref.resource_type)
    is_subject = principal is not None and resource.subject_id == principal.id
    if rule.direct_subject or is_subject:
        granted = requested
    else:
        granted = requested & entitled

    reason: Optional[FailureCode] = None
    if principal is None:
        reason = FailureCode.UNKNOWN_PRINCIPAL
    elif not principal.active:
        reason = FailureCode.PRINCIPAL_INACTIVE
    elif not granting:
        reason = FailureCode.NOT_PERMITTED
    elif rule.requires_resource and not resource.exists:
        reason = FailureCode.RESOURCE_UNAVAILABLE

    allowed = reason is None
    return AuthorizationDecision(
        principal_id=principal_id,
        action=action,
        ref=resource.ref,
        requested_fields=requested,
        allowed=allowed,
        granted_fields=granted if allowed else frozenset(),
        denial_reason=reason,
        role=_role_label(granting if allowed else roles),
        policy_version=snapshot.version,
    )


class AuthorizationEngine:
    """
    Stateless apart from the bounded-staleness snapshot cache; safe for concurrent use.
    Authorization is evaluated once per call; a revocation takes effect on the next call.
    """

    def __init__(self, policy_source: CachedPolicySource) -> None:
        self._policies = policy_source

    @property
    def policy_source(self) -> CachedPolicySource:
        return self._policies

    async def decide(
        self,
        principal: Optional[Principal],
        action: Action,
        resource: ResourceDescriptor,
        requested_fields: Iterable[str] = (),
        *,
        principal_id: Optional[str] = None,
    ) -> AuthorizationDecision:
        """Raises PolicyStoreUnavailableError when no snapshot can be obtained."""
        snapshot = await self._policies.snapshot()
        pid = principal.id if principal is not None else (principal_id or "unknown")
        return evaluate(snapshot, principal, pid, action, resource, requested_fields)
