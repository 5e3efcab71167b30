"""Custom exceptions for Monee Split."""


class MoneeSplitError(Exception):
    """Base exception for all Monee Split errors."""

    pass


class ConfigurationError(MoneeSplitError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(MoneeSplitError):
    """Raised when input is malformed. Nothing has been persisted."""

    def __init__(self, message: str, fields: list[str] | None = None):
        self.fields = fields or []
        super().__init__(message)


class AuthorizationError(MoneeSplitError):
    """Raised when the caller's role does not allow the attempted mutation."""

    def __init__(self, action: str, message: str | None = None):
        self.action = action
        super().__init__(message or f"Not allowed to {action} in this group")


class NotFoundError(MoneeSplitError):
    """Raised when a group, expense, user or membership is not visible."""

    pass


class PersistenceError(MoneeSplitError):
    """Raised when an atomic write fails. The transaction was rolled back."""

    pass


class AllocationFallbackWarning(UserWarning):
    """
    Reported (not raised) when a PERCENT or MANUAL split was replaced by EQUAL.

    Carried on AllocationResult.fallback so callers can tell the user.
    """

    def __init__(self, requested_mode: str, reason: str):
        self.requested_mode = requested_mode
        self.reason = reason
        super().__init__(f"{requested_mode} split rejected, used EQUAL: {reason}")
