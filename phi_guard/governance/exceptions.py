"""Governance-layer exceptions. Typed, no HTTP."""


class GovernanceError(Exception):
    """Base for all governance-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class LogStoreUnavailableError(GovernanceError):
    """Raised by a log store when an append or query cannot reach durable storage."""


class RetentionBlockedError(GovernanceError):
    """Disposition attempted while a legal hold is active. Expected steady state."""


class PolicyNotFoundError(GovernanceError):
    """A resource's retention class has no configured policy. Configuration gap."""


class PolicyConfigurationError(GovernanceError):
    """Raised when a published policy would violate a configuration invariant."""


class InvalidWorkflowStateError(GovernanceError):
    """Raised when an administrative transition is not allowed (e.g. lift a hold twice)."""


class ChainIntegrityError(GovernanceError):
    """Raised when an audit hash chain does not verify."""
