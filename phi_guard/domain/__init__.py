"""Domain layer: models, schemas, exceptions. Pure business logic only."""

from phi_guard.domain.exceptions import (
    DomainError,
    DomainValidationError,
    InvalidStatusTransitionError,
)
from phi_guard.domain.models import (
    Action,
    LegalHold,
    Principal,
    ResourceMetadata,
    ResourceRef,
    ResourceState,
    RetentionPolicy,
    RoleDefinition,
)
from phi_guard.domain.schemas import (
    AuditPageResponse,
    AuditRecordResponse,
    LegalHoldRequest,
)

__all__ = [
    "Action",
    "AuditPageResponse",
    "AuditRecordResponse",
    "DomainError",
    "DomainValidationError",
    "InvalidStatusTransitionError",
    "LegalHold",
    "LegalHoldRequest",
    "Principal",
    "ResourceMetadata",
    "ResourceRef",
    "ResourceState",
    "RetentionPolicy",
    "RoleDefinition",
]
