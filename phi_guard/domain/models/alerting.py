"""Declarative alert rules. Pure data; evaluated by the alerting monitor."""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet

from phi_guard.domain.models.access import Action


class AlertKind(str, Enum):
    DENIED_BURST = "DENIED_BURST"
    UNAUTHORIZED_DELETE = "UNAUTHORIZED_DELETE"
    VOLUME_BASELINE = "VOLUME_BASELINE"
    OPERATIONAL = "OPERATIONAL"


@dataclass(frozen=True)
class AlertRule:
    """
    threshold + window + action pattern. An empty actions set matches every action.
    VOLUME_BASELINE fires when the current window exceeds
    max(threshold, multiplier * mean of the previous baseline_windows windows).
    """

    name: str
    kind: AlertKind
    threshold: int = 1
    window_seconds: int = 60
    actions: FrozenSet[Action] = frozenset()
    multiplier: float = 3.0
    baseline_windows: int = 5

    def matches_action(self, action: Action) -> bool:
        return not self.actions or action in self.actions


DEFAULT_ALERT_RULES = (
    AlertRule(name="denied-burst", kind=AlertKind.DENIED_BURST, threshold=5, window_seconds=60),
    AlertRule(
        name="delete-outside-scheduler",
        kind=AlertKind.UNAUTHORIZED_DELETE,
        actions=frozenset({Action.PHI_DELETE}),
    ),
    AlertRule(
        name="bulk-export",
        kind=AlertKind.VOLUME_BASELINE,
        threshold=50,
        window_seconds=300,
        actions=frozenset({Action.PHI_EXPORT, Action.PHI_READ}),
    ),
)
