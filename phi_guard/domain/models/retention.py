"""Retention policy value objects."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class DispositionAction(str, Enum):
    DELETE = "DELETE"
    ARCHIVE = "ARCHIVE"


def add_years(moment: datetime, years: int) -> datetime:
    """Calendar-year addition; Feb 29 rolls back to Feb 28 in non-leap years."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


@dataclass(frozen=True)
class RetentionPolicy:
    """One version of the policy for a retention class. Append-only."""

    retention_class: str
    version: int
    duration_years: int
    disposition: DispositionAction
    effective_from: datetime

    def expires_at(self, created_at: datetime) -> datetime:
        return add_years(created_at, self.duration_years)


@dataclass(frozen=True)
class EffectiveRetention:
    """
    Policy applied at check time. duration_years may exceed policy.duration_years when an
    earlier version in effect since the resource's creation was longer.
    """

    policy: RetentionPolicy
    duration_years: int

    @property
    def version(self) -> int:
        return self.policy.version

    @property
    def disposition(self) -> DispositionAction:
        return self.policy.disposition

    def expires_at(self, created_at: datetime) -> datetime:
        return add_years(created_at, self.duration_years)
