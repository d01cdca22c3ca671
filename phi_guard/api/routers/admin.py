"""Administrative API: legal holds and principal deactivation. Mediated; elevated permissions."""

from typing import Annotated

from fastapi import APIRouter, Depends

from phi_guard.api.dependencies import Container, get_container, get_correlation_id, get_principal_id
from phi_guard.domain.models.resource import LegalHold, ResourceRef
from phi_guard.domain.schemas.audit import LegalHoldRequest, LegalHoldResponse, PrincipalResponse

router = APIRouter()


def _hold_response(ref: ResourceRef, hold: LegalHold) -> LegalHoldResponse:
    return LegalHoldResponse(
        resource_type=ref.resource_type,
        resource_id=ref.resource_id,
        active=hold.active,
        placed_by=hold.placed_by,
        placed_at=hold.placed_at,
        review_at=hold.review_at,
    )


@router.post("/legal-holds/{resource_type}/{resource_id}", response_model=LegalHoldResponse, status_code=201)
async def place_legal_hold(
    resource_type: str,
    resource_id: str,
    body: LegalHoldRequest,
    principal_id: Annotated[str, Depends(get_principal_id)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
    container: Annotated[Container, Depends(get_container)],
):
    ref = ResourceRef(resource_type, resource_id)
    hold = await container.legal_holds.place_hold(
        principal_id,
        ref,
        reason=body.reason,
        review_at=body.review_at,
        correlation_id=correlation_id or None,
    )
    return _hold_response(ref, hold)


@router.delete("/legal-holds/{resource_type}/{resource_id}", response_model=LegalHoldResponse)
async def lift_legal_hold(
    resource_type: str,
    resource_id: str,
    principal_id: Annotated[str, Depends(get_principal_id)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
    container: Annotated[Container, Depends(get_container)],
):
    ref = ResourceRef(resource_type, resource_id)
    hold = await container.legal_holds.lift_hold(principal_id, ref, correlation_id=correlation_id or None)
    return _hold_response(ref, hold)


@router.post("/principals/{subject_principal_id}/deactivate", response_model=PrincipalResponse)
async def deactivate_principal(
    subject_principal_id: str,
    principal_id: Annotated[str, Depends(get_principal_id)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
    container: Annotated[Container, Depends(get_container)],
):
    principal = await container.principal_admin.deactivate(
        principal_id, subject_principal_id, correlation_id=correlation_id or None
    )
    return PrincipalResponse(principal_id=principal.id, active=principal.active)
