# Domain models: pure business semantics, no ORM or infrastructure.

from phi_guard.domain.models.alerting import AlertKind, AlertRule
from phi_guard.domain.models.access import (
    Action,
    Channel,
    DispositionReason,
    FailureCode,
    Outcome,
    Permission,
    rule_for,
)
from phi_guard.domain.models.principal import Principal, RoleDefinition
from phi_guard.domain.models.resource import (
    LegalHold,
    ResourceMetadata,
    ResourceRef,
    ResourceState,
)
from phi_guard.domain.models.retention import (
    DispositionAction,
    EffectiveRetention,
    RetentionPolicy,
)

__all__ = [
    "Action",
    "AlertKind",
    "AlertRule",
    "Channel",
    "DispositionAction",
    "DispositionReason",
    "EffectiveRetention",
    "FailureCode",
    "LegalHold",
    "Outcome",
    "Permission",
    "Principal",
    "ResourceMetadata",
    "ResourceRef",
    "ResourceState",
    "RetentionPolicy",
    "RoleDefinition",
    "rule_for",
]
