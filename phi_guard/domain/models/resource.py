"""Protected resource metadata and its disposition lifecycle. Content is never held here."""

import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from phi_guard.domain.exceptions import DomainValidationError, InvalidStatusTransitionError

# Reference alphabet shared by every identifier that reaches an audit record.
REFERENCE_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._:@+\-]{0,127}$"
_REFERENCE_RE = re.compile(REFERENCE_PATTERN)


def validate_reference(value: str, name: str) -> str:
    if not isinstance(value, str) or not _REFERENCE_RE.match(value):
        raise DomainValidationError(f"{name} must be an opaque reference, got {value!r}")
    return value


@dataclass(frozen=True)
class ResourceRef:
    """Opaque pointer (type + id) to sensitive data owned by an external store."""

    resource_type: str
    resource_id: str

    def __post_init__(self) -> None:
        validate_reference(self.resource_type, "resource_type")
        validate_reference(self.resource_id, "resource_id")

    @property
    def key(self) -> str:
        return f"{self.resource_type}:{self.resource_id}"

    def __str__(self) -> str:
        return self.key


class ResourceState(str, Enum):
    ACTIVE = "ACTIVE"
    ELIGIBLE_FOR_DISPOSITION = "ELIGIBLE_FOR_DISPOSITION"
    ARCHIVED = "ARCHIVED"
    DELETED = "DELETED"


_STATE_TRANSITIONS: Dict[ResourceState, FrozenSet[ResourceState]] = {
    # ACTIVE -> DELETED only for a mediated PHI_DELETE; retention always passes through ELIGIBLE.
    ResourceState.ACTIVE: frozenset(
        {ResourceState.ELIGIBLE_FOR_DISPOSITION, ResourceState.DELETED}
    ),
    ResourceState.ELIGIBLE_FOR_DISPOSITION: frozenset(
        {ResourceState.ARCHIVED, ResourceState.DELETED}
    ),
    ResourceState.ARCHIVED: frozenset(),
    ResourceState.DELETED: frozenset(),
}

TERMINAL_STATES = frozenset({ResourceState.ARCHIVED, ResourceState.DELETED})


@dataclass(frozen=True)
class LegalHold:
    """
    Administrative freeze. Blocks disposition until explicitly lifted; review_at is
    the date the hold should be reviewed, not an automatic release.
    """

    active: bool
    reason: str
    placed_by: str
    placed_at: datetime
    review_at: Optional[datetime] = None

    def lifted(self) -> "LegalHold":
        return replace(self, active=False)


@dataclass
class ResourceMetadata:
    """
    Everything the engine knows about a protected resource.
    State must be changed only via transition_to() to enforce lifecycle rules.
    supports: parent resource this one exists solely to support (cascade rule).
    """

    ref: ResourceRef
    created_at: datetime
    retention_class: str
    subject_id: Optional[str] = None
    owner_id: Optional[str] = None
    legal_hold: Optional[LegalHold] = None
    state: ResourceState = ResourceState.ACTIVE
    supports: Optional[ResourceRef] = None

    @property
    def under_hold(self) -> bool:
        return self.legal_hold is not None and self.legal_hold.active

    @property
    def is_disposed(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition_to(self, new_state: ResourceState) -> None:
        """Raises InvalidStatusTransitionError if the lifecycle does not allow it."""
        allowed = _STATE_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise InvalidStatusTransitionError(
                f"Invalid state transition for {self.ref} from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
