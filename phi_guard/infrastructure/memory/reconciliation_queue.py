"""In-memory reconciliation queue."""

from typing import List

from phi_guard.application.reconciliation import ReconciliationItem


class InMemoryReconciliationQueue:
    def __init__(self) -> None:
        self._items: List[ReconciliationItem] = []

    async def flag(self, item: ReconciliationItem) -> None:
        self._items.append(item)

    async def pending(self) -> List[ReconciliationItem]:
        return list(self._items)
