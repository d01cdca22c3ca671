"""
Administrative changes to policy and principals. Each change is a mediated access so the
audit trail shows who changed what configuration and when.
"""

import logging
from typing import Iterable, Mapping, Optional, Tuple

from phi_guard.application.access_mediator import AccessGrant, AccessMediator
from phi_guard.application.interfaces import ManagedPrincipalDirectory
from phi_guard.domain.models.access import Action, Channel
from phi_guard.domain.models.alerting import AlertRule
from phi_guard.domain.models.principal import Principal, RoleDefinition
from phi_guard.domain.models.resource import ResourceRef
from phi_guard.domain.models.retention import DispositionAction, RetentionPolicy
from phi_guard.governance.exceptions import InvalidWorkflowStateError
from phi_guard.security.policy_store import CachedPolicySource, PolicyStore

logger = logging.getLogger(__name__)

POLICY_RESOURCE_TYPE = "policy"
PRINCIPAL_RESOURCE_TYPE = "principal"


class PolicyAdministration:
    """The only sanctioned way to change the role table, retention table and alert rules."""

    def __init__(
        self,
        mediator: AccessMediator,
        store: PolicyStore,
        policy_source: Optional[CachedPolicySource] = None,
    ) -> None:
        self._mediator = mediator
        self._store = store
        self._policies = policy_source

    def _changed(self) -> None:
        if self._policies is not None:
            self._policies.invalidate()

    async def publish_role(
        self,
        actor_id: str,
        name: str,
        permissions: Iterable[str],
        field_grants: Optional[Mapping[str, Iterable[str]]] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> RoleDefinition:
        async def _publish(grant: AccessGrant) -> RoleDefinition:
            return self._store.publish_role(name, permissions, field_grants)

        role = await self._mediator.mediate(
            actor_id,
            Action.POLICY_CHANGE,
            ResourceRef(POLICY_RESOURCE_TYPE, f"role.{name}"),
            _publish,
            correlation_id=correlation_id,
            channel=Channel.ADMIN,
        )
        self._changed()
        return role

    async def publish_retention_policy(
        self,
        actor_id: str,
        retention_class: str,
        duration_years: int,
        disposition: DispositionAction,
        *,
        correlation_id: Optional[str] = None,
    ) -> RetentionPolicy:
        """Raises PolicyConfigurationError (after a failure record) on an invalid policy."""

        async def _publish(grant: AccessGrant) -> RetentionPolicy:
            return self._store.publish_retention_policy(retention_class, duration_years, disposition)

        policy = await self._mediator.mediate(
            actor_id,
            Action.POLICY_CHANGE,
            ResourceRef(POLICY_RESOURCE_TYPE, f"retention.{retention_class}"),
            _publish,
            correlation_id=correlation_id,
            channel=Channel.ADMIN,
        )
        self._changed()
        return policy

    async def publish_alert_rules(
        self,
        actor_id: str,
        rules: Iterable[AlertRule],
        *,
        correlation_id: Optional[str] = None,
    ) -> Tuple[AlertRule, ...]:
        rules = tuple(rules)

        async def _publish(grant: AccessGrant) -> Tuple[AlertRule, ...]:
            return self._store.publish_alert_rules(rules)

        published = await self._mediator.mediate(
            actor_id,
            Action.POLICY_CHANGE,
            ResourceRef(POLICY_RESOURCE_TYPE, "alert-rules"),
            _publish,
            correlation_id=correlation_id,
            channel=Channel.ADMIN,
        )
        self._changed()
        return published


class PrincipalAdministration:
    """Offboarding deactivates; it never deletes. Ids are never reused."""

    def __init__(self, mediator: AccessMediator, directory: ManagedPrincipalDirectory) -> None:
        self._mediator = mediator
        self._directory = directory

    async def _existing(self, principal_id: str) -> Principal:
        principal = await self._directory.get_principal(principal_id)
        if principal is None:
            raise InvalidWorkflowStateError(f"Unknown principal: {principal_id}")
        return principal

    async def deactivate(
        self,
        actor_id: str,
        principal_id: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> Principal:
        async def _deactivate(grant: AccessGrant) -> Principal:
            principal = await self._existing(principal_id)
            if not principal.active:
                raise InvalidWorkflowStateError(f"Principal already inactive: {principal_id}")
            return await self._directory.deactivate(principal_id)

        principal = await self._mediator.mediate(
            actor_id,
            Action.PRINCIPAL_DEACTIVATE,
            ResourceRef(PRINCIPAL_RESOURCE_TYPE, principal_id),
            _deactivate,
            correlation_id=correlation_id,
            channel=Channel.ADMIN,
        )
        logger.info("principal_deactivated", extra={"resource_id": principal_id})
        return principal

    async def assign_roles(
        self,
        actor_id: str,
        principal_id: str,
        roles: Iterable[str],
        *,
        correlation_id: Optional[str] = None,
    ) -> Principal:
        roles = frozenset(roles)

        async def _assign(grant: AccessGrant) -> Principal:
            await self._existing(principal_id)
            return await self._directory.assign_roles(principal_id, roles)

        return await self._mediator.mediate(
            actor_id,
            Action.POLICY_CHANGE,
            ResourceRef(PRINCIPAL_RESOURCE_TYPE, principal_id),
            _assign,
            correlation_id=correlation_id,
            channel=Channel.ADMIN,
        )
