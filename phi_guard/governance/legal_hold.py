"""Legal hold administration. Every placement and lift is a mediated, audited access. No FastAPI."""

from datetime import datetime, timezone
from typing import Callable, List, Optional

from phi_guard.application.access_mediator import AccessGrant, AccessMediator
from phi_guard.application.interfaces import ResourceCatalog
from phi_guard.domain.models.access import Action, Channel
from phi_guard.domain.models.resource import LegalHold, ResourceMetadata, ResourceRef
from phi_guard.governance.exceptions import InvalidWorkflowStateError

MAX_REASON_LENGTH = 256


class LegalHoldService:
    """
    Places and lifts holds on catalogued resources.
    A hold blocks disposition until it is explicitly lifted; review_at only marks when
    the hold is due for review. Transitions enforced: place requires no active hold,
    lift requires one.
    """

    def __init__(
        self,
        mediator: AccessMediator,
        catalog: ResourceCatalog,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._mediator = mediator
        self._catalog = catalog
        self._clock = clock

    async def _metadata(self, ref: ResourceRef) -> ResourceMetadata:
        metadata = await self._catalog.get(ref)
        if metadata is None:
            raise InvalidWorkflowStateError(f"Resource not catalogued: {ref}")
        return metadata

    async def place_hold(
        self,
        actor_id: str,
        ref: ResourceRef,
        *,
        reason: str,
        review_at: Optional[datetime] = None,
        correlation_id: Optional[str] = None,
    ) -> LegalHold:
        """Place a hold. Raises InvalidWorkflowStateError if one is already active."""
        if not reason or len(reason) > MAX_REASON_LENGTH:
            raise InvalidWorkflowStateError("Hold reason must be 1-256 characters")

        async def _place(grant: AccessGrant) -> LegalHold:
            metadata = await self._metadata(grant.ref)
            if metadata.under_hold:
                raise InvalidWorkflowStateError(f"Legal hold already active: {grant.ref}")
            hold = LegalHold(
                active=True,
                reason=reason,
                placed_by=actor_id,
                placed_at=self._clock(),
                review_at=review_at,
            )
            metadata.legal_hold = hold
            await self._catalog.save(metadata)
            return hold

        return await self._mediator.mediate(
            actor_id,
            Action.LEGAL_HOLD_PLACE,
            ref,
            _place,
            correlation_id=correlation_id,
            channel=Channel.ADMIN,
        )

    async def lift_hold(
        self,
        actor_id: str,
        ref: ResourceRef,
        *,
        correlation_id: Optional[str] = None,
    ) -> LegalHold:
        """Lift the active hold. Raises InvalidWorkflowStateError if none is active."""

        async def _lift(grant: AccessGrant) -> LegalHold:
            metadata = await self._metadata(grant.ref)
            hold = metadata.legal_hold
            if hold is None or not hold.active:
                raise InvalidWorkflowStateError(f"No active legal hold: {grant.ref}")
            lifted = hold.lifted()
            metadata.legal_hold = lifted
            await self._catalog.save(metadata)
            return lifted

        return await self._mediator.mediate(
            actor_id,
            Action.LEGAL_HOLD_LIFT,
            ref,
            _lift,
            correlation_id=correlation_id,
            channel=Channel.ADMIN,
        )


def holds_due_for_review(resources: List[ResourceMetadata], now: datetime) -> List[ResourceMetadata]:
    """Active holds whose review date has passed."""
    return [
        m
        for m in resources
        if m.under_hold and m.legal_hold is not None
        and m.legal_hold.review_at is not None
        and m.legal_hold.review_at <= now
    ]
