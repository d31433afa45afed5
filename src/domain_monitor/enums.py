"""
Enumeration types for the domain monitor system.

These enums provide type-safe constants for verification methods, record
states, notification categories and revalidation sections.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class VerificationMethod(Enum):
    """Ownership-proof methods, in the order they are attempted."""

    DNS_TXT = "dns_txt"
    HTML_FILE = "html_file"
    META_TAG = "meta_tag"


class VerificationStatus(Enum):
    """Persisted verification state of a tracked domain."""

    VERIFIED = "verified"
    FAILING = "failing"
    UNVERIFIED = "unverified"


class FailureAction(Enum):
    """What the sweep did with a domain that failed re-verification."""

    MARKED_FAILING = "marked_failing"
    IN_GRACE_PERIOD = "in_grace_period"
    REVOKED = "revoked"


class NotificationCategory(Enum):
    """Categories a user can toggle email/in-app delivery for."""

    DOMAIN_EXPIRY = "domain_expiry"
    CERTIFICATE_EXPIRY = "certificate_expiry"
    VERIFICATION_STATUS = "verification_status"
    REGISTRATION_CHANGES = "registration_changes"
    PROVIDER_CHANGES = "provider_changes"
    CERTIFICATE_CHANGES = "certificate_changes"


class NotificationType(Enum):
    """Concrete notification kinds, used for deduplication."""

    VERIFICATION_FAILING = "verification_failing"
    VERIFICATION_REVOKED = "verification_revoked"
    REGISTRATION_CHANGE = "registration_change"
    PROVIDER_CHANGE = "provider_change"
    CERTIFICATE_CHANGE = "certificate_change"
    DOMAIN_EXPIRY_30D = "domain_expiry_30d"
    DOMAIN_EXPIRY_14D = "domain_expiry_14d"
    DOMAIN_EXPIRY_7D = "domain_expiry_7d"
    DOMAIN_EXPIRY_1D = "domain_expiry_1d"
    CERTIFICATE_EXPIRY_14D = "certificate_expiry_14d"
    CERTIFICATE_EXPIRY_7D = "certificate_expiry_7d"
    CERTIFICATE_EXPIRY_3D = "certificate_expiry_3d"
    CERTIFICATE_EXPIRY_1D = "certificate_expiry_1d"


class Section(Enum):
    """Named data sections that can be revalidated on demand."""

    DNS = "dns"
    HEADERS = "headers"
    HOSTING = "hosting"
    CERTIFICATES = "certificates"
    SEO = "seo"
    REGISTRATION = "registration"


class WorkflowState(Enum):
    """Lifecycle of a persisted auto-verify record."""

    SCHEDULED = "scheduled"
    VERIFIED = "verified"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


class CancelReason(Enum):
    """Why an auto-verify schedule stopped early."""

    DOMAIN_DELETED = "domain_deleted"
    ALREADY_VERIFIED = "already_verified"


class UnitOutcome(Enum):
    """Outcome of one sweep unit, as seen by the batch."""

    CONFIRMED = "confirmed"
    CONFLICT = "conflict"
    FAILED = "failed"


class FetchErrorKind(Enum):
    """Discriminant carried by guarded fetch errors."""

    INVALID_URL = "invalid_url"
    PROTOCOL_NOT_ALLOWED = "protocol_not_allowed"
    HOST_NOT_ALLOWED = "host_not_allowed"
    HOST_BLOCKED = "host_blocked"
    PRIVATE_IP = "private_ip"
    DNS_ERROR = "dns_error"
    REDIRECT_LIMIT = "redirect_limit"
    SIZE_EXCEEDED = "size_exceeded"
    RESPONSE_ERROR = "response_error"


class DomainValidationErrorCode(Enum):
    """Error codes for domain validation failures."""

    FORBIDDEN_CHARS = "forbidden_chars"
    INVALID_LABEL = "invalid_label"
    IDNA_ERROR = "idna_error"
    EMPTY_INPUT = "empty_input"


class RDAPErrorCode(Enum):
    """Error codes for RDAP client operations."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
