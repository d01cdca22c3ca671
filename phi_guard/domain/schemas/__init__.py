"""Domain schemas. Request/response and validation."""

from phi_guard.domain.schemas.audit import (
    AuditPageResponse,
    AuditRecordResponse,
    LegalHoldRequest,
    LegalHoldResponse,
    PrincipalResponse,
)

__all__ = [
    "AuditPageResponse",
    "AuditRecordResponse",
    "LegalHoldRequest",
    "LegalHoldResponse",
    "PrincipalResponse",
]
