"""
Change detection between two point-in-time snapshots.

Every function here is pure: no I/O, no clock, no mutable state. Status and
nameserver lists are compared as normalized, unordered sets. A missing
previous snapshot is a baseline, never "everything changed".
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .enums import NotificationCategory
from .models import (
    CertificateSnapshot,
    ProviderSnapshot,
    RegistrationSnapshot,
    Snapshot,
)

_STATUS_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_status(status: str) -> str:
    """'clientTransferProhibited', 'client transfer prohibited' and
    'client_transfer_prohibited' all normalize to 'clienttransferprohibited'."""
    return _STATUS_SEPARATORS.sub("", status.lower())


def normalize_statuses(statuses: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_status(s) for s in statuses if s and s.strip())


def statuses_equal(a: Iterable[str], b: Iterable[str]) -> bool:
    return normalize_statuses(a) == normalize_statuses(b)


def normalize_hosts(hosts: Iterable[str]) -> frozenset[str]:
    return frozenset(h.strip().rstrip(".").lower() for h in hosts if h and h.strip())


def hosts_equal(a: Iterable[str], b: Iterable[str]) -> bool:
    return normalize_hosts(a) == normalize_hosts(b)


@dataclass
class RegistrationChanges:
    registrar_changed: bool = False
    nameservers_changed: bool = False
    transfer_lock_changed: bool = False
    statuses_changed: bool = False
    previous_registrar: Optional[str] = None
    new_registrar: Optional[str] = None
    previous_nameservers: list[str] = field(default_factory=list)
    new_nameservers: list[str] = field(default_factory=list)
    previous_transfer_lock: Optional[bool] = None
    new_transfer_lock: Optional[bool] = None
    previous_statuses: list[str] = field(default_factory=list)
    new_statuses: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return (
            self.registrar_changed
            or self.nameservers_changed
            or self.transfer_lock_changed
            or self.statuses_changed
        )


@dataclass
class CertificateChanges:
    ca_provider_changed: bool = False
    issuer_changed: bool = False
    previous_ca_provider_id: Optional[str] = None
    new_ca_provider_id: Optional[str] = None
    previous_issuer: Optional[str] = None
    new_issuer: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return self.ca_provider_changed or self.issuer_changed


@dataclass
class ProviderChanges:
    dns_provider_changed: bool = False
    hosting_provider_changed: bool = False
    email_provider_changed: bool = False
    previous_dns_provider_id: Optional[str] = None
    new_dns_provider_id: Optional[str] = None
    previous_hosting_provider_id: Optional[str] = None
    new_hosting_provider_id: Optional[str] = None
    previous_email_provider_id: Optional[str] = None
    new_email_provider_id: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return (
            self.dns_provider_changed
            or self.hosting_provider_changed
            or self.email_provider_changed
        )


@dataclass
class ChangeRecord:
    """Per-category change flags with previous/new values. Derived, never stored."""

    registration: RegistrationChanges = field(default_factory=RegistrationChanges)
    certificate: CertificateChanges = field(default_factory=CertificateChanges)
    providers: ProviderChanges = field(default_factory=ProviderChanges)
    baseline: bool = False

    @property
    def has_changes(self) -> bool:
        return (
            self.registration.has_changes
            or self.certificate.has_changes
            or self.providers.has_changes
        )

    def changed_categories(self) -> list[NotificationCategory]:
        categories = []
        if self.registration.has_changes:
            categories.append(NotificationCategory.REGISTRATION_CHANGES)
        if self.providers.has_changes:
            categories.append(NotificationCategory.PROVIDER_CHANGES)
        if self.certificate.has_changes:
            categories.append(NotificationCategory.CERTIFICATE_CHANGES)
        return categories


def detect_registration_changes(
    previous: RegistrationSnapshot,
    current: RegistrationSnapshot,
) -> RegistrationChanges:
    return RegistrationChanges(
        registrar_changed=previous.registrar_provider_id != current.registrar_provider_id,
        nameservers_changed=not hosts_equal(previous.nameservers, current.nameservers),
        transfer_lock_changed=previous.transfer_lock != current.transfer_lock,
        statuses_changed=not statuses_equal(previous.statuses, current.statuses),
        previous_registrar=previous.registrar_provider_id,
        new_registrar=current.registrar_provider_id,
        previous_nameservers=list(previous.nameservers),
        new_nameservers=list(current.nameservers),
        previous_transfer_lock=previous.transfer_lock,
        new_transfer_lock=current.transfer_lock,
        previous_statuses=list(previous.statuses),
        new_statuses=list(current.statuses),
    )


def detect_certificate_changes(
    previous: Optional[CertificateSnapshot],
    current: Optional[CertificateSnapshot],
) -> CertificateChanges:
    """Compare the leaf certificates' CA and issuer only; the chain is ignored."""
    previous = previous or CertificateSnapshot()
    current = current or CertificateSnapshot()
    return CertificateChanges(
        ca_provider_changed=previous.ca_provider_id != current.ca_provider_id,
        issuer_changed=previous.issuer != current.issuer,
        previous_ca_provider_id=previous.ca_provider_id,
        new_ca_provider_id=current.ca_provider_id,
        previous_issuer=previous.issuer,
        new_issuer=current.issuer,
    )


def detect_provider_changes(
    previous: ProviderSnapshot,
    current: ProviderSnapshot,
) -> ProviderChanges:
    return ProviderChanges(
        dns_provider_changed=previous.dns_provider_id != current.dns_provider_id,
        hosting_provider_changed=previous.hosting_provider_id != current.hosting_provider_id,
        email_provider_changed=previous.email_provider_id != current.email_provider_id,
        previous_dns_provider_id=previous.dns_provider_id,
        new_dns_provider_id=current.dns_provider_id,
        previous_hosting_provider_id=previous.hosting_provider_id,
        new_hosting_provider_id=current.hosting_provider_id,
        previous_email_provider_id=previous.email_provider_id,
        new_email_provider_id=current.email_provider_id,
    )


def detect_changes(previous: Optional[Snapshot], current: Snapshot) -> ChangeRecord:
    """
    Compare two snapshots of the same domain.

    Args:
        previous: Stored snapshot, or None if the domain has none yet
        current: Freshly built snapshot

    Returns:
        ChangeRecord; with no previous snapshot it is a baseline record with
        every flag false
    """
    if previous is None:
        return ChangeRecord(baseline=True)

    return ChangeRecord(
        registration=detect_registration_changes(previous.registration, current.registration),
        certificate=detect_certificate_changes(previous.certificate, current.certificate),
        providers=detect_provider_changes(previous.providers, current.providers),
    )


def select_leaf_certificate(
    certificates: list[CertificateSnapshot],
) -> Optional[CertificateSnapshot]:
    """
    Pick the certificate change detection should look at.

    The earliest-expiring certificate is the leaf for any sane chain.
    Certificates without an expiry sort last; ties keep chain order.
    """
    if not certificates:
        return None
    dated = [c for c in certificates if c.valid_to]
    if not dated:
        return certificates[0]
    return min(dated, key=lambda c: c.valid_to or "")
