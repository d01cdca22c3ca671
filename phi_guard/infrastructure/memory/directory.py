"""In-memory principal directory with role-change notifications."""

import logging
from typing import Dict, Iterable, List, Optional

from phi_guard.application.interfaces import RoleChangeCallback
from phi_guard.domain.models.principal import Principal

logger = logging.getLogger(__name__)


class InMemoryPrincipalDirectory:
    """
    Principals are provisioned once and never removed. Every role or activation change
    notifies subscribers so decision caches can drop stale snapshots.
    """

    def __init__(self) -> None:
        self._principals: Dict[str, Principal] = {}
        self._subscribers: List[RoleChangeCallback] = []

    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        return self._principals.get(principal_id)

    def subscribe(self, callback: RoleChangeCallback) -> None:
        self._subscribers.append(callback)

    def _notify(self, principal_id: str) -> None:
        for callback in self._subscribers:
            try:
                callback(principal_id)
            except Exception:
                logger.exception("role_change_callback_failed")

    def provision(self, principal_id: str, handle: str, roles: Iterable[str] = ()) -> Principal:
        if principal_id in self._principals:
            raise ValueError(f"Principal id already issued: {principal_id}")
        principal = Principal(id=principal_id, handle=handle, roles=frozenset(roles))
        self._principals[principal_id] = principal
        return principal

    async def assign_roles(self, principal_id: str, roles: Iterable[str]) -> Principal:
        principal = self._principals[principal_id].with_roles(frozenset(roles))
        self._principals[principal_id] = principal
        self._notify(principal_id)
        return principal

    async def deactivate(self, principal_id: str) -> Principal:
        principal = self._principals[principal_id].deactivated()
        self._principals[principal_id] = principal
        self._notify(principal_id)
        return principal
