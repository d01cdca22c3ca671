"""Audit query API: resource and principal history, cursor paged. Each page is an AUDIT_VIEW access."""

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from phi_guard.api.dependencies import Container, get_container, get_correlation_id, get_principal_id
from phi_guard.domain.models.resource import ResourceRef, validate_reference
from phi_guard.domain.schemas.audit import AuditPageResponse, AuditRecordResponse
from phi_guard.governance.audit_query import decode_cursor, encode_cursor
from phi_guard.governance.audit_repository import AuditPage, AuditQuery

router = APIRouter()


def _to_response(page: AuditPage) -> AuditPageResponse:
    return AuditPageResponse(
        records=[AuditRecordResponse.from_record(r) for r in page.records],
        next_cursor=encode_cursor(page.next_cursor),
    )


@router.get("/resources/{resource_type}/{resource_id}", response_model=AuditPageResponse)
async def resource_history(
    resource_type: str,
    resource_id: str,
    principal_id: Annotated[str, Depends(get_principal_id)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
    container: Annotated[Container, Depends(get_container)],
    cursor: Optional[str] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    """Who accessed this resource, in sequence order."""
    query = AuditQuery(resource=ResourceRef(resource_type, resource_id), start=start, end=end)
    page = await container.audit_queries.page(
        principal_id,
        query,
        cursor=decode_cursor(cursor),
        limit=limit,
        correlation_id=correlation_id or None,
    )
    return _to_response(page)


@router.get("/principals/{subject_principal_id}", response_model=AuditPageResponse)
async def principal_history(
    subject_principal_id: str,
    principal_id: Annotated[str, Depends(get_principal_id)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
    container: Annotated[Container, Depends(get_container)],
    cursor: Optional[str] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    """Everything this principal touched."""
    validate_reference(subject_principal_id, "principal_id")
    query = AuditQuery(principal_id=subject_principal_id, start=start, end=end)
    page = await container.audit_queries.page(
        principal_id,
        query,
        cursor=decode_cursor(cursor),
        limit=limit,
        correlation_id=correlation_id or None,
    )
    return _to_response(page)
