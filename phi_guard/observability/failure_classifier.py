"""Error taxonomy. Maps exceptions to a code, an HTTP status and a generic caller-facing message."""

from enum import Enum

from phi_guard.application.exceptions import (
    ApplicationError,
    AuditWriteFailureError,
    OperationFailedError,
    OperationTimeoutError,
    ResourceConflictError,
    ServiceUnavailableError,
)
from phi_guard.domain.exceptions import (
    DomainError,
    DomainValidationError,
    InvalidStatusTransitionError,
)
from phi_guard.governance.exceptions import (
    GovernanceError,
    InvalidWorkflowStateError,
    LogStoreUnavailableError,
    PolicyConfigurationError,
    PolicyNotFoundError,
    RetentionBlockedError,
)
from phi_guard.security.exceptions import (
    AccessDeniedError,
    EncryptionError,
    PolicyStoreUnavailableError,
    SecurityError,
)


class ErrorCode(str, Enum):
    """Taxonomy for failure classification."""

    ACCESS_DENIED = "ACCESS_DENIED"
    AUDIT_WRITE_FAILURE = "AUDIT_WRITE_FAILURE"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    RETENTION_BLOCKED = "RETENTION_BLOCKED"
    POLICY_NOT_FOUND = "POLICY_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    OPERATION_FAILED = "OPERATION_FAILED"
    OPERATION_TIMEOUT = "OPERATION_TIMEOUT"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


# Callers never learn why beyond the code; reviewers read the audit record.
_PUBLIC: dict[ErrorCode, tuple[int, str]] = {
    ErrorCode.ACCESS_DENIED: (403, "Not authorized"),
    ErrorCode.AUDIT_WRITE_FAILURE: (503, "Temporarily unavailable"),
    ErrorCode.SERVICE_UNAVAILABLE: (503, "Temporarily unavailable"),
    ErrorCode.RETENTION_BLOCKED: (409, "Conflict"),
    ErrorCode.POLICY_NOT_FOUND: (500, "Internal error"),
    ErrorCode.VALIDATION_ERROR: (422, "Invalid request"),
    ErrorCode.CONFLICT: (409, "Conflict"),
    ErrorCode.OPERATION_FAILED: (502, "Operation failed"),
    ErrorCode.OPERATION_TIMEOUT: (504, "Operation timed out"),
    ErrorCode.UNEXPECTED_ERROR: (500, "Internal error"),
}


class ErrorClassifier:
    """
    Classifies exceptions into ErrorCode. Integrates with MetricsCollector via the
    caller (the API exception handler increments metrics).
    """

    @staticmethod
    def classify(exception: BaseException) -> ErrorCode:
        """Map exception to ErrorCode. Unknown -> UNEXPECTED_ERROR."""
        if isinstance(exception, AccessDeniedError):
            return ErrorCode.ACCESS_DENIED
        if isinstance(exception, AuditWriteFailureError):
            return ErrorCode.AUDIT_WRITE_FAILURE
        if isinstance(
            exception,
            (ServiceUnavailableError, PolicyStoreUnavailableError, LogStoreUnavailableError),
        ):
            return ErrorCode.SERVICE_UNAVAILABLE
        if isinstance(exception, RetentionBlockedError):
            return ErrorCode.RETENTION_BLOCKED
        if isinstance(exception, PolicyNotFoundError):
            return ErrorCode.POLICY_NOT_FOUND
        if isinstance(exception, OperationTimeoutError):
            return ErrorCode.OPERATION_TIMEOUT
        if isinstance(exception, OperationFailedError):
            return ErrorCode.OPERATION_FAILED
        if isinstance(
            exception,
            (ResourceConflictError, InvalidWorkflowStateError, InvalidStatusTransitionError),
        ):
            return ErrorCode.CONFLICT
        if isinstance(exception, (DomainValidationError, PolicyConfigurationError)):
            return ErrorCode.VALIDATION_ERROR
        if isinstance(exception, EncryptionError):
            return ErrorCode.UNEXPECTED_ERROR
        if isinstance(exception, SecurityError):
            return ErrorCode.ACCESS_DENIED
        if isinstance(exception, (ApplicationError, GovernanceError, DomainError)):
            return ErrorCode.OPERATION_FAILED
        return ErrorCode.UNEXPECTED_ERROR

    @staticmethod
    def status_code(code: ErrorCode) -> int:
        return _PUBLIC[code][0]

    @staticmethod
    def public_message(code: ErrorCode) -> str:
        return _PUBLIC[code][1]
