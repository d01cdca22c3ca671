"""
Collaborator protocols consumed by the mediator and scheduler.
Infrastructure implements them; the core never assumes a storage technology.
"""

from typing import (
    Any,
    AsyncContextManager,
    Callable,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

from phi_guard.domain.models.principal import Principal
from phi_guard.domain.models.resource import ResourceMetadata, ResourceRef


class ResourceStore(Protocol):
    """External store of sensitive content. delete must leave no recoverable trace."""

    async def read(self, ref: ResourceRef, fields: Iterable[str]) -> Mapping[str, Any]:
        ...

    async def write(self, ref: ResourceRef, data: Mapping[str, Any]) -> None:
        ...

    async def delete(self, ref: ResourceRef) -> None:
        ...


@runtime_checkable
class TransactionalResourceStore(ResourceStore, Protocol):
    """Store whose writes can be held until the audit record is durable."""

    def transaction(self) -> AsyncContextManager[ResourceStore]:
        """Yields a store view; commits on normal exit, rolls back on exception."""
        ...


@runtime_checkable
class ArchivingResourceStore(ResourceStore, Protocol):
    async def archive(self, ref: ResourceRef) -> None:
        """Move content to cold, append-only storage and remove it from the live store."""
        ...


RoleChangeCallback = Callable[[str], None]


class PrincipalDirectory(Protocol):
    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        ...

    def subscribe(self, callback: RoleChangeCallback) -> None:
        """callback(principal_id) on every role assignment or activation change."""
        ...


class ResourceCatalog(Protocol):
    """Metadata about protected resources. Holds no content."""

    async def get(self, ref: ResourceRef) -> Optional[ResourceMetadata]:
        ...

    async def add(self, metadata: ResourceMetadata) -> None:
        """Raises ResourceConflictError if the ref is already catalogued."""
        ...

    async def save(self, metadata: ResourceMetadata) -> None:
        ...

    async def page(self, after: Optional[str], limit: int) -> List[ResourceMetadata]:
        """Catalog entries ordered by ref key, strictly after the given key."""
        ...

    async def dependents_of(self, ref: ResourceRef) -> List[ResourceMetadata]:
        ...


class ManagedPrincipalDirectory(PrincipalDirectory, Protocol):
    """Directory that accepts administrative changes. Principals are never deleted."""

    async def assign_roles(self, principal_id: str, roles: Iterable[str]) -> Principal:
        ...

    async def deactivate(self, principal_id: str) -> Principal:
        ...
