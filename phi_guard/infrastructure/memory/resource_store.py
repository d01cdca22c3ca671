"""In-memory resource store: transactional writes and an archive area for dispositions."""

import copy
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, Mapping, Optional

from phi_guard.application.exceptions import OperationFailedError
from phi_guard.domain.models.resource import ResourceRef

_DELETED = object()


class _TransactionView:
    """Buffers writes and deletes; reads see the buffer first."""

    def __init__(self, base: "InMemoryResourceStore") -> None:
        self._base = base
        self._pending: Dict[str, Any] = {}

    async def read(self, ref: ResourceRef, fields: Iterable[str]) -> Mapping[str, Any]:
        staged = self._pending.get(ref.key)
        if staged is _DELETED:
            raise OperationFailedError(f"Resource content not found: {ref}")
        if staged is not None:
            return {f: staged[f] for f in fields if f in staged}
        return await self._base.read(ref, fields)

    async def write(self, ref: ResourceRef, data: Mapping[str, Any]) -> None:
        current = self._pending.get(ref.key)
        if current is None or current is _DELETED:
            current = dict(self._base.content(ref) or {})
        current.update(data)
        self._pending[ref.key] = current

    async def delete(self, ref: ResourceRef) -> None:
        self._pending[ref.key] = _DELETED

    def commit(self) -> None:
        for key, value in self._pending.items():
            if value is _DELETED:
                self._base.discard(key)
            else:
                self._base.put(key, value)


class InMemoryResourceStore:
    """
    Implements TransactionalResourceStore and ArchivingResourceStore.
    delete() leaves no copy behind; archive() moves content to the archive area.
    """

    def __init__(self) -> None:
        self._live: Dict[str, Dict[str, Any]] = {}
        self._archived: Dict[str, Dict[str, Any]] = {}

    def content(self, ref: ResourceRef) -> Optional[Dict[str, Any]]:
        value = self._live.get(ref.key)
        return copy.deepcopy(value) if value is not None else None

    def archived(self, ref: ResourceRef) -> Optional[Dict[str, Any]]:
        return self._archived.get(ref.key)

    def put(self, key: str, value: Dict[str, Any]) -> None:
        self._live[key] = value

    def discard(self, key: str) -> None:
        self._live.pop(key, None)

    async def read(self, ref: ResourceRef, fields: Iterable[str]) -> Mapping[str, Any]:
        value = self._live.get(ref.key)
        if value is None:
            raise OperationFailedError(f"Resource content not found: {ref}")
        return {f: copy.deepcopy(value[f]) for f in fields if f in value}

    async def write(self, ref: ResourceRef, data: Mapping[str, Any]) -> None:
        self._live.setdefault(ref.key, {}).update(copy.deepcopy(dict(data)))

    async def delete(self, ref: ResourceRef) -> None:
        self._live.pop(ref.key, None)

    async def archive(self, ref: ResourceRef) -> None:
        value = self._live.pop(ref.key, None)
        if value is not None:
            self._archived[ref.key] = value

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_TransactionView]:
        view = _TransactionView(self)
        yield view
        # Reached only when the block exits cleanly; any exception discards the buffer.
        view.commit()
