"""Principals and versioned roles. Immutable value objects."""

from dataclasses import dataclass, field, replace
from typing import FrozenSet, Mapping


@dataclass(frozen=True)
class Principal:
    """
    Durable identity. Ids are never reused; offboarding deactivates, it never deletes.
    """

    id: str
    handle: str
    active: bool = True
    roles: FrozenSet[str] = frozenset()

    def deactivated(self) -> "Principal":
        return replace(self, active=False)

    def with_roles(self, roles: FrozenSet[str]) -> "Principal":
        return replace(self, roles=frozenset(roles))


@dataclass(frozen=True)
class RoleDefinition:
    """
    One version of a named role. A permission change publishes a new version;
    older versions stay so past decisions remain explainable.
    field_grants: resource_type -> fields the role is entitled to see.
    """

    name: str
    version: int
    permissions: FrozenSet[str]
    field_grants: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.name}@v{self.version}"

    def fields_for(self, resource_type: str) -> FrozenSet[str]:
        return frozenset(self.field_grants.get(resource_type, frozenset()))
