"""
Exception classes for the domain monitor system.

All exceptions inherit from DomainMonitorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional

from .enums import FetchErrorKind


class DomainMonitorError(Exception):
    """Base exception for all domain monitor errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainMonitorError):
    """Raised when input validation fails (malformed domain, unknown method)."""

    pass


class AuthorizationError(DomainMonitorError):
    """Raised when a cron trigger presents a missing or wrong bearer token."""

    pass


class NotFoundError(DomainMonitorError):
    """Raised when a tracked domain does not exist."""

    pass


class TransientNetworkError(DomainMonitorError):
    """Raised when a single network attempt fails (timeout, DNS, connection)."""

    pass


class SafeFetchError(TransientNetworkError):
    """Raised by the guarded fetch; ``kind`` tells callers why."""

    def __init__(
        self,
        kind: FetchErrorKind,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.kind = kind
        super().__init__(code=kind.value, message=message, details=details)


class ConcurrencyConflict(DomainMonitorError):
    """Raised when a conditional write finds the record changed since it was read."""

    pass


class PersistentFailure(DomainMonitorError):
    """An auto-verify schedule ran out of attempts. Logged, never escalated."""

    pass


class PersistenceError(DomainMonitorError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass


class NotificationError(DomainMonitorError):
    """Raised when a notification channel is misconfigured."""

    pass
