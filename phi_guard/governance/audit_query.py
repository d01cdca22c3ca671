"""Mediated audit history queries. Viewing the trail is itself an audited AUDIT_VIEW access."""

import base64
import uuid
from typing import AsyncIterator, Optional

from phi_guard.application.access_mediator import AccessGrant, AccessMediator
from phi_guard.core.context import correlation_id_ctx
from phi_guard.domain.exceptions import DomainValidationError
from phi_guard.domain.models.access import Action, Channel
from phi_guard.domain.models.resource import ResourceRef
from phi_guard.governance.audit_models import AuditRecord
from phi_guard.governance.audit_repository import AuditPage, AuditQuery, AuditReader
from phi_guard.governance.exceptions import InvalidWorkflowStateError

MAX_PAGE_SIZE = 500


class AuditQueryService:
    """
    Pages and lazy iteration over audit history, ordered by record position.
    Cursors are opaque to callers and restart iteration where it stopped.
    """

    def __init__(self, mediator: AccessMediator, reader: AuditReader) -> None:
        self._mediator = mediator
        self._reader = reader

    @staticmethod
    def _target(query: AuditQuery) -> ResourceRef:
        if query.resource is not None:
            return query.resource
        if query.principal_id is not None:
            return ResourceRef("principal", query.principal_id)
        raise InvalidWorkflowStateError("Audit query needs a resource or a principal")

    async def page(
        self,
        viewer_id: str,
        query: AuditQuery,
        *,
        cursor: Optional[int] = None,
        limit: int = 100,
        correlation_id: Optional[str] = None,
        channel: Channel = Channel.API,
    ) -> AuditPage:
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        async def _fetch(grant: AccessGrant) -> AuditPage:
            return await self._reader.fetch_page(query, cursor, limit)

        return await self._mediator.mediate(
            viewer_id,
            Action.AUDIT_VIEW,
            self._target(query),
            _fetch,
            correlation_id=correlation_id,
            channel=channel,
        )

    async def iter_records(
        self,
        viewer_id: str,
        query: AuditQuery,
        *,
        cursor: Optional[int] = None,
        page_size: int = 100,
    ) -> AsyncIterator[AuditRecord]:
        """
        Lazy and finite. Iteration stops at the first AUDIT_VIEW record it produced
        itself, so views written while iterating never feed back into the results.
        """
        base = correlation_id_ctx.get() or str(uuid.uuid4())
        ceiling: Optional[int] = None
        page_number = 0
        while True:
            correlation_id = f"{base}.p{page_number}"
            page = await self.page(
                viewer_id, query, cursor=cursor, limit=page_size, correlation_id=correlation_id
            )
            if ceiling is None:
                own = await self._reader.find_by_correlation_id(correlation_id)
                ceiling = own.record_id if own is not None else None
            for record in page.records:
                if ceiling is not None and record.record_id >= ceiling:
                    return
                yield record
            if page.next_cursor is None:
                return
            cursor = page.next_cursor
            page_number += 1


def encode_cursor(position: Optional[int]) -> Optional[str]:
    """Opaque external form of a record position."""
    if position is None:
        return None
    return base64.urlsafe_b64encode(f"rec:{position}".encode()).decode().rstrip("=")


def decode_cursor(cursor: Optional[str]) -> Optional[int]:
    """Raises DomainValidationError for anything encode_cursor did not produce."""
    if not cursor:
        return None
    try:
        raw = base64.urlsafe_b64decode(cursor + "=" * (-len(cursor) % 4)).decode()
        prefix, _, value = raw.partition(":")
        if prefix != "rec":
            raise ValueError(prefix)
        position = int(value)
    except (ValueError, UnicodeDecodeError) as e:
        raise DomainValidationError("Invalid cursor") from e
    if position < 0:
        raise DomainValidationError("Invalid cursor")
    return position
