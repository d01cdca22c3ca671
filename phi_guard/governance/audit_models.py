"""
Audit entry (recorder input) and audit record (persisted unit of truth).

AuditEntry is the only way to produce a log entry. It is a frozen pydantic model that
forbids unknown fields and constrains every identifier to the reference alphabet, so
resource content has no slot to travel through.
"""

import hashlib
import json
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from phi_guard.domain.models.access import (
    Action,
    Channel,
    DispositionReason,
    FailureCode,
    Outcome,
)
from phi_guard.domain.models.resource import REFERENCE_PATTERN, ResourceRef

GENESIS_HASH = "0" * 64

# role-at-time-of-action, e.g. "clinician@v3,nurse@v1"
ROLE_PATTERN = r"^[A-Za-z0-9._@:+,\-]{0,512}$"


class StorageTier(str, Enum):
    HOT = "hot"
    COLD = "cold"


class AuditEntry(BaseModel):
    """Content-free description of one access. Validated at construction."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_id: str = Field(..., pattern=REFERENCE_PATTERN)
    role: str = Field("", pattern=ROLE_PATTERN)
    action: Action
    resource_type: str = Field(..., pattern=REFERENCE_PATTERN)
    resource_id: str = Field(..., pattern=REFERENCE_PATTERN)
    outcome: Outcome
    failure_code: Optional[FailureCode] = None
    channel: Channel = Channel.API
    correlation_id: str = Field(..., pattern=REFERENCE_PATTERN)
    policy_version: Optional[int] = Field(None, ge=1)
    justification: Optional[DispositionReason] = None

    @field_validator("failure_code")
    @classmethod
    def success_has_no_failure_code(cls, v: Optional[FailureCode], info) -> Optional[FailureCode]:
        if v is not None and info.data.get("outcome") == Outcome.SUCCESS:
            raise ValueError("success records carry no failure_code")
        return v

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(self.resource_type, self.resource_id)


@dataclass(frozen=True)
class AuditAck:
    """Durable, verifiable position returned by the log store."""

    record_id: int
    sequence: int
    record_hash: str


@dataclass(frozen=True)
class AuditRecord:
    """
    Immutable audit record: who, what, when (UTC), outcome, correlation_id.
    sequence is per resource; record_id is global. Hashes chain per resource.
    """

    record_id: int
    sequence: int
    principal_id: str
    role: str
    action: Action
    resource_type: str
    resource_id: str
    timestamp_utc: datetime
    outcome: Outcome
    failure_code: Optional[FailureCode]
    channel: Channel
    correlation_id: str
    policy_version: Optional[int]
    justification: Optional[DispositionReason]
    previous_hash: str
    record_hash: str
    tier: StorageTier = StorageTier.HOT

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(self.resource_type, self.resource_id)

    @property
    def ack(self) -> AuditAck:
        return AuditAck(self.record_id, self.sequence, self.record_hash)

    def hashed_fields(self) -> Dict[str, Any]:
        """Fields covered by record_hash. Tier and hashes themselves are excluded."""
        return {
            "record_id": self.record_id,
            "sequence": self.sequence,
            "principal_id": self.principal_id,
            "role": self.role,
            "action": self.action.value,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "timestamp_utc": self.timestamp_utc.isoformat(),
            "outcome": self.outcome.value,
            "failure_code": self.failure_code.value if self.failure_code else None,
            "channel": self.channel.value,
            "correlation_id": self.correlation_id,
            "policy_version": self.policy_version,
            "justification": self.justification.value if self.justification else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for JSON logging and the query API."""
        return {
            **self.hashed_fields(),
            "previous_hash": self.previous_hash,
            "record_hash": self.record_hash,
            "tier": self.tier.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditRecord":
        return cls(
            record_id=data["record_id"],
            sequence=data["sequence"],
            principal_id=data["principal_id"],
            role=data["role"],
            action=Action(data["action"]),
            resource_type=data["resource_type"],
            resource_id=data["resource_id"],
            timestamp_utc=datetime.fromisoformat(data["timestamp_utc"]),
            outcome=Outcome(data["outcome"]),
            failure_code=FailureCode(data["failure_code"]) if data.get("failure_code") else None,
            channel=Channel(data["channel"]),
            correlation_id=data["correlation_id"],
            policy_version=data.get("policy_version"),
            justification=(
                DispositionReason(data["justification"]) if data.get("justification") else None
            ),
            previous_hash=data["previous_hash"],
            record_hash=data["record_hash"],
            tier=StorageTier(data.get("tier", StorageTier.HOT.value)),
        )


def idempotency_key(source: Any) -> str:
    """
    Identity of one mediated call's record. A retried call maps to the same key; any other
    access reusing the correlation id (other principal, action, resource or outcome) does not.
    """
    parts = (
        source.correlation_id,
        source.principal_id,
        source.action.value,
        source.resource_type,
        source.resource_id,
        source.outcome.value,
    )
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


def compute_record_hash(fields: Dict[str, Any], previous_hash: str) -> str:
    """SHA-256 over canonical JSON of the hashed fields plus the previous link."""
    canonical = json.dumps(
        {**fields, "previous_hash": previous_hash},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_record(
    entry: AuditEntry,
    *,
    record_id: int,
    sequence: int,
    timestamp_utc: datetime,
    previous_hash: str,
) -> AuditRecord:
    """Materialise an entry at its assigned position and seal it into the chain."""
    draft = AuditRecord(
        record_id=record_id,
        sequence=sequence,
        principal_id=entry.principal_id,
        role=entry.role,
        action=entry.action,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        timestamp_utc=timestamp_utc,
        outcome=entry.outcome,
        failure_code=entry.failure_code,
        channel=entry.channel,
        correlation_id=entry.correlation_id,
        policy_version=entry.policy_version,
        justification=entry.justification,
        previous_hash=previous_hash,
        record_hash="",
    )
    record_hash = compute_record_hash(draft.hashed_fields(), previous_hash)
    return replace(draft, record_hash=record_hash)
