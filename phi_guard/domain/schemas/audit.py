"""Pydantic schemas for the audit and administration API. Strict validation, no DB or infrastructure."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from phi_guard.domain.models.access import Action, Channel, DispositionReason, FailureCode, Outcome


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LegalHoldRequest(BaseModel):
    """Place a legal hold. reason is a matter reference, kept on resource metadata only."""

    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1, max_length=256, description="Matter or case reference")
    review_at: Optional[datetime] = Field(None, description="Date the hold is due for review")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class AuditRecordResponse(BaseModel):
    """One audit record as returned to reviewers. References only."""

    record_id: int
    sequence: int
    principal_id: str
    role: str
    action: Action
    resource_type: str
    resource_id: str
    timestamp_utc: datetime
    outcome: Outcome
    failure_code: Optional[FailureCode] = None
    channel: Channel
    correlation_id: str
    policy_version: Optional[int] = None
    justification: Optional[DispositionReason] = None
    previous_hash: str
    record_hash: str
    tier: str

    @classmethod
    def from_record(cls, record: Any) -> "AuditRecordResponse":
        return cls(
            record_id=record.record_id,
            sequence=record.sequence,
            principal_id=record.principal_id,
            role=record.role,
            action=record.action,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
            timestamp_utc=record.timestamp_utc,
            outcome=record.outcome,
            failure_code=record.failure_code,
            channel=record.channel,
            correlation_id=record.correlation_id,
            policy_version=record.policy_version,
            justification=record.justification,
            previous_hash=record.previous_hash,
            record_hash=record.record_hash,
            tier=record.tier.value,
        )


class AuditPageResponse(BaseModel):
    records: List[AuditRecordResponse]
    next_cursor: Optional[str] = Field(None, description="Opaque; pass back as ?cursor= to resume")


class LegalHoldResponse(BaseModel):
    resource_type: str
    resource_id: str
    active: bool
    placed_by: str
    placed_at: datetime
    review_at: Optional[datetime] = None


class PrincipalResponse(BaseModel):
    principal_id: str
    active: bool
