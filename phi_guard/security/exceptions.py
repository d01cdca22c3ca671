"""Security-layer exceptions. Typed, no HTTP."""


class SecurityError(Exception):
    """Base for all security-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AccessDeniedError(SecurityError):
    """
    ACCESS_DENIED. Raised for a denied decision and for a missing resource alike;
    callers cannot tell the two apart.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class PolicyStoreUnavailableError(SecurityError):
    """Raised when the policy store cannot produce a snapshot."""


class EncryptionError(SecurityError):
    """Raised when sealing/unsealing fails (e.g. missing key, wrong key)."""
