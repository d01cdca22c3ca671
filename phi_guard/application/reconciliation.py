"""Reconciliation of accesses that reached a non-transactional store without a durable record."""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from phi_guard.domain.models.access import Action, Outcome
from phi_guard.domain.models.resource import ResourceRef


@dataclass(frozen=True)
class ReconciliationItem:
    """References only: enough for an operator to replay the missing record or undo the write."""

    correlation_id: str
    principal_id: str
    action: Action
    ref: ResourceRef
    outcome: Outcome
    flagged_at: datetime


class ReconciliationQueue(Protocol):
    async def flag(self, item: ReconciliationItem) -> None:
        ...

    async def pending(self) -> list[ReconciliationItem]:
        ...
