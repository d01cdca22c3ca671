"""Application-layer exceptions. Messages are generic; detail lives in the audit trail."""


class ApplicationError(Exception):
    """Base for all application-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuditWriteFailureError(ApplicationError):
    """AUDIT_WRITE_FAILURE: the access record could not be made durable. Fatal to the call."""

    def __init__(self, message: str = "Temporarily unavailable", *, reconciliation_required: bool = False) -> None:
        super().__init__(message)
        self.reconciliation_required = reconciliation_required


class ServiceUnavailableError(ApplicationError):
    """A dependency (policy store, directory) stayed unreachable after bounded retries."""

    def __init__(self, message: str = "Temporarily unavailable") -> None:
        super().__init__(message)


class OperationTimeoutError(ApplicationError):
    """The resource operation exceeded its deadline. A failure record was written."""


class ResourceConflictError(ApplicationError):
    """Raised by catalog writes that would overwrite an existing resource."""


class OperationFailedError(ApplicationError):
    """The resource store could not complete the operation. A failure record was written."""
