"""Access vocabulary: actions, outcomes, channels and the codes recorded for them."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class Permission:
    """Permission names granted by roles. Plain strings so role tables stay data."""

    PHI_READ = "phi:read"
    PHI_WRITE = "phi:write"
    PHI_CREATE = "phi:create"
    PHI_DELETE = "phi:delete"
    PHI_ARCHIVE = "phi:archive"
    PHI_EXPORT = "phi:export"
    SUBJECT_READ = "phi:subject-read"
    AUDIT_VIEW = "audit:view"
    LEGAL_HOLD_MANAGE = "legal-hold:manage"
    PRINCIPAL_MANAGE = "principal:manage"
    POLICY_MANAGE = "policy:manage"


class Action(str, Enum):
    PHI_READ = "PHI_READ"
    PHI_WRITE = "PHI_WRITE"
    PHI_CREATE = "PHI_CREATE"
    PHI_DELETE = "PHI_DELETE"
    PHI_ARCHIVE = "PHI_ARCHIVE"
    PHI_EXPORT = "PHI_EXPORT"
    SUBJECT_READ = "SUBJECT_READ"
    AUDIT_VIEW = "AUDIT_VIEW"
    LEGAL_HOLD_PLACE = "LEGAL_HOLD_PLACE"
    LEGAL_HOLD_LIFT = "LEGAL_HOLD_LIFT"
    PRINCIPAL_DEACTIVATE = "PRINCIPAL_DEACTIVATE"
    POLICY_CHANGE = "POLICY_CHANGE"


@dataclass(frozen=True)
class ActionRule:
    """
    permission: required permission.
    requires_resource: the target must exist in the resource catalog.
    direct_subject: minimum-necessary filter is bypassed (right-of-access reads).
    """

    permission: str
    requires_resource: bool = True
    direct_subject: bool = False


_ACTION_RULES: Dict[Action, ActionRule] = {
    Action.PHI_READ: ActionRule(Permission.PHI_READ),
    Action.PHI_WRITE: ActionRule(Permission.PHI_WRITE),
    Action.PHI_CREATE: ActionRule(Permission.PHI_CREATE, requires_resource=False),
    Action.PHI_DELETE: ActionRule(Permission.PHI_DELETE),
    Action.PHI_ARCHIVE: ActionRule(Permission.PHI_ARCHIVE),
    Action.PHI_EXPORT: ActionRule(Permission.PHI_EXPORT),
    Action.SUBJECT_READ: ActionRule(Permission.SUBJECT_READ, direct_subject=True),
    Action.AUDIT_VIEW: ActionRule(Permission.AUDIT_VIEW, requires_resource=False),
    Action.LEGAL_HOLD_PLACE: ActionRule(Permission.LEGAL_HOLD_MANAGE),
    Action.LEGAL_HOLD_LIFT: ActionRule(Permission.LEGAL_HOLD_MANAGE),
    Action.PRINCIPAL_DEACTIVATE: ActionRule(Permission.PRINCIPAL_MANAGE, requires_resource=False),
    Action.POLICY_CHANGE: ActionRule(Permission.POLICY_MANAGE, requires_resource=False),
}


def rule_for(action: Action) -> ActionRule:
    return _ACTION_RULES[action]


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class Channel(str, Enum):
    """Source/channel tag recorded with each access."""

    API = "api"
    BATCH = "batch"
    ADMIN = "admin"
    SCHEDULER = "scheduler"
    INTERNAL = "internal"


class FailureCode(str, Enum):
    """Structured failure detail recorded on denied/failure records. Reviewer-facing only."""

    NOT_PERMITTED = "NOT_PERMITTED"
    PRINCIPAL_INACTIVE = "PRINCIPAL_INACTIVE"
    UNKNOWN_PRINCIPAL = "UNKNOWN_PRINCIPAL"
    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"
    POLICY_UNAVAILABLE = "POLICY_UNAVAILABLE"
    OPERATION_ERROR = "OPERATION_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


class DispositionReason(str, Enum):
    """Justification codes carried by deletion records."""

    RETENTION_ELAPSED = "RETENTION_ELAPSED"
    CASCADE = "CASCADE"
