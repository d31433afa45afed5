"""
Data models for the domain monitor system.

This module defines the tracked-domain record, point-in-time snapshots,
verification results, durable workflow records and notifications.
Timestamps are ISO 8601 strings in UTC, as persisted.
"""

from dataclasses import dataclass, field
from typing import Optional

from .enums import (
    NotificationCategory,
    VerificationMethod,
    VerificationStatus,
    WorkflowState,
)


@dataclass
class NotificationToggle:
    """Email/in-app delivery flags for one notification category."""

    email: bool = True
    in_app: bool = True


@dataclass
class TrackedDomain:
    """A domain a user tracks, with its ownership verification state."""

    id: str
    domain_name: str
    owner_user_id: str
    verification_token: Optional[str]
    verified: bool = False
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    verification_method: Optional[VerificationMethod] = None
    verification_failed_at: Optional[str] = None
    archived_at: Optional[str] = None
    # category value -> toggle; replaces the user's global preference
    notification_overrides: dict[str, NotificationToggle] = field(default_factory=dict)
    created_at: str = ""
    version: int = 0  # bumped on every effective write


@dataclass
class VerificationFailure:
    """Structured reason a verification request was rejected as bad input."""

    code: str
    message: str
    details: dict = field(default_factory=dict)


@dataclass
class VerificationResult:
    """Terminal output of every verification attempt."""

    verified: bool
    method: Optional[VerificationMethod]
    error: Optional[VerificationFailure] = None

    @property
    def is_validation_failure(self) -> bool:
        """True when the request itself was invalid, not just unprovable."""
        return self.error is not None


@dataclass
class RegistrationSnapshot:
    """Registration facts as reported by RDAP."""

    registrar_provider_id: Optional[str] = None
    nameservers: list[str] = field(default_factory=list)
    transfer_lock: Optional[bool] = None
    statuses: list[str] = field(default_factory=list)
    expiration_date: Optional[str] = None  # ISO-8601, from the RDAP "expiration" event


@dataclass
class CertificateSnapshot:
    """The leaf (earliest-expiring) certificate served by the domain."""

    ca_provider_id: Optional[str] = None
    issuer: Optional[str] = None
    valid_to: Optional[str] = None
    fingerprint: Optional[str] = None


@dataclass
class ProviderSnapshot:
    """Detected infrastructure providers."""

    dns_provider_id: Optional[str] = None
    hosting_provider_id: Optional[str] = None
    email_provider_id: Optional[str] = None


@dataclass
class Snapshot:
    """Point-in-time summary used as the "previous" side of change detection."""

    tracked_domain_id: str
    registration: RegistrationSnapshot = field(default_factory=RegistrationSnapshot)
    certificate: Optional[CertificateSnapshot] = None
    providers: ProviderSnapshot = field(default_factory=ProviderSnapshot)
    created_at: str = ""


@dataclass
class WorkflowRecord:
    """
    Persisted state of one auto-verify schedule.

    The record is the only thing a worker needs to resume: the slot to run
    next and when it becomes due.
    """

    workflow_id: str
    tracked_domain_id: str
    attempt_index: int  # 0-based slot that runs at next_due_at
    next_due_at: str
    state: WorkflowState = WorkflowState.SCHEDULED
    created_at: str = ""
    updated_at: str = ""
    result: Optional[dict] = None


@dataclass
class Notification:
    """An in-app notification, also used as the dedup ledger."""

    id: str
    user_id: str
    tracked_domain_id: str
    type: str
    category: NotificationCategory
    title: str
    message: str
    created_at: str
    data: dict = field(default_factory=dict)
    read_at: Optional[str] = None
