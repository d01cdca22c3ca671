"""In-memory resource catalog. Metadata only; resource content lives in the resource store."""

import asyncio
from bisect import bisect_right, insort
from typing import Dict, List, Optional, Set

from phi_guard.application.exceptions import ResourceConflictError
from phi_guard.domain.models.resource import ResourceMetadata, ResourceRef


class InMemoryResourceCatalog:
    """
    Keeps a sorted key index so page() can resume strictly after a key, and a
    parent -> dependents index so cascade lookups do not walk the whole catalog.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ResourceMetadata] = {}
        self._keys: List[str] = []
        self._parent_of: Dict[str, str] = {}
        self._dependents: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, ref: ResourceRef) -> Optional[ResourceMetadata]:
        return self._entries.get(ref.key)

    def _index_parent(self, metadata: ResourceMetadata) -> None:
        key = metadata.ref.key
        parent = metadata.supports.key if metadata.supports is not None else None
        previous = self._parent_of.get(key)
        if previous == parent:
            return
        if previous is not None:
            siblings = self._dependents[previous]
            siblings.discard(key)
            if not siblings:
                del self._dependents[previous]
            del self._parent_of[key]
        if parent is not None:
            self._parent_of[key] = parent
            self._dependents.setdefault(parent, set()).add(key)

    async def add(self, metadata: ResourceMetadata) -> None:
        async with self._lock:
            key = metadata.ref.key
            if key in self._entries:
                raise ResourceConflictError(f"Resource already catalogued: {key}")
            self._entries[key] = metadata
            insort(self._keys, key)
            self._index_parent(metadata)

    async def save(self, metadata: ResourceMetadata) -> None:
        async with self._lock:
            key = metadata.ref.key
            if key not in self._entries:
                insort(self._keys, key)
            self._entries[key] = metadata
            self._index_parent(metadata)

    async def page(self, after: Optional[str], limit: int) -> List[ResourceMetadata]:
        start = bisect_right(self._keys, after) if after is not None else 0
        return [self._entries[key] for key in self._keys[start:start + limit]]

    async def dependents_of(self, ref: ResourceRef) -> List[ResourceMetadata]:
        return [self._entries[key] for key in sorted(self._dependents.get(ref.key, ()))]
