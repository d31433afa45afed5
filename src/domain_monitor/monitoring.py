"""
Snapshot monitoring: build the current snapshot of a verified domain,
compare it with the stored one and notify on what changed.
"""

from typing import TYPE_CHECKING, Optional, Protocol

from .audit_logger import AuditLogger, ComponentLogger
from .change_detection import ChangeRecord, detect_changes, normalize_hosts
from .enums import NotificationCategory, NotificationType
from .exceptions import TransientNetworkError
from .models import Snapshot, TrackedDomain
from .notifications import NotificationPayload, NotificationService
from .workflow import Clock, SystemClock, to_iso

if TYPE_CHECKING:
    from .state_store import StateStore


_CATEGORY_TYPES = {
    NotificationCategory.REGISTRATION_CHANGES: NotificationType.REGISTRATION_CHANGE,
    NotificationCategory.PROVIDER_CHANGES: NotificationType.PROVIDER_CHANGE,
    NotificationCategory.CERTIFICATE_CHANGES: NotificationType.CERTIFICATE_CHANGE,
}

_CATEGORY_TITLES = {
    NotificationCategory.REGISTRATION_CHANGES: "Registration changed",
    NotificationCategory.PROVIDER_CHANGES: "Providers changed",
    NotificationCategory.CERTIFICATE_CHANGES: "Certificate changed",
}


class SnapshotSource(Protocol):
    """Builds the current snapshot for a tracked domain."""

    async def build_snapshot(self, domain: TrackedDomain) -> Snapshot:
        ...


def _pair(label: str, previous: object, new: object) -> str:
    return f"{label}: {previous if previous is not None else 'none'} -> {new if new is not None else 'none'}"


def describe_changes(record: ChangeRecord, category: NotificationCategory) -> list[str]:
    """Human-readable lines for the true flags of one category."""
    lines: list[str] = []
    if category == NotificationCategory.REGISTRATION_CHANGES:
        reg = record.registration
        if reg.registrar_changed:
            lines.append(_pair("Registrar", reg.previous_registrar, reg.new_registrar))
        if reg.nameservers_changed:
            lines.append(_pair(
                "Nameservers",
                ", ".join(sorted(normalize_hosts(reg.previous_nameservers))),
                ", ".join(sorted(normalize_hosts(reg.new_nameservers))),
            ))
        if reg.transfer_lock_changed:
            lines.append(_pair("Transfer lock", reg.previous_transfer_lock, reg.new_transfer_lock))
        if reg.statuses_changed:
            lines.append(_pair("Statuses", ", ".join(reg.previous_statuses), ", ".join(reg.new_statuses)))
    elif category == NotificationCategory.PROVIDER_CHANGES:
        prov = record.providers
        if prov.dns_provider_changed:
            lines.append(_pair("DNS provider", prov.previous_dns_provider_id, prov.new_dns_provider_id))
        if prov.hosting_provider_changed:
            lines.append(_pair("Hosting provider", prov.previous_hosting_provider_id, prov.new_hosting_provider_id))
        if prov.email_provider_changed:
            lines.append(_pair("Email provider", prov.previous_email_provider_id, prov.new_email_provider_id))
    elif category == NotificationCategory.CERTIFICATE_CHANGES:
        cert = record.certificate
        if cert.ca_provider_changed:
            lines.append(_pair("Certificate authority", cert.previous_ca_provider_id, cert.new_ca_provider_id))
        if cert.issuer_changed:
            lines.append(_pair("Issuer", cert.previous_issuer, cert.new_issuer))
    return lines


class ChangeMonitor:
    """Compares live data against the stored snapshot and keeps it current."""

    def __init__(
        self,
        store: "StateStore",
        source: SnapshotSource,
        notifier: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._source = source
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._log = ComponentLogger(logger, "ChangeMonitor")

    async def check(self, domain: TrackedDomain) -> ChangeRecord:
        """
        Detect changes for ``domain`` and replace its snapshot.

        The first snapshot of a domain is stored as a baseline and triggers
        no notification.
        """
        current = await self._source.build_snapshot(domain)
        current.tracked_domain_id = domain.id
        current.created_at = to_iso(self._clock.now())

        previous = self._store.get_snapshot(domain.id)
        record = detect_changes(previous, current)

        if record.baseline:
            self._log.info("Baseline snapshot stored", {"tracked_domain_id": domain.id, "domain": domain.domain_name})
        elif record.has_changes:
            categories = record.changed_categories()
            self._log.info(
                "Changes detected",
                {
                    "tracked_domain_id": domain.id,
                    "domain": domain.domain_name,
                    "categories": [c.value for c in categories],
                },
            )
            if self._notifier is not None:
                for category in categories:
                    await self._notify(domain, record, category)

        self._store.replace_snapshot(current)
        return record

    async def initialize_snapshot(self, domain: TrackedDomain) -> Optional[ChangeRecord]:
        """
        Check a domain right after it was verified.

        A snapshot that cannot be built now is logged and left to the next
        sweep; the verification itself stands.
        """
        try:
            return await self.check(domain)
        except TransientNetworkError as e:
            self._log.warn(
                "Initial snapshot unavailable",
                {"tracked_domain_id": domain.id, "domain": domain.domain_name, "error_code": e.code},
            )
            return None

    async def _notify(
        self,
        domain: TrackedDomain,
        record: ChangeRecord,
        category: NotificationCategory,
    ) -> None:
        lines = describe_changes(record, category)
        title = f"{_CATEGORY_TITLES[category]} for {domain.domain_name}"
        await self._notifier.notify(
            NotificationPayload(
                tracked_domain_id=domain.id,
                user_id=domain.owner_user_id,
                domain=domain.domain_name,
                category=category,
                type=_CATEGORY_TYPES[category],
                title=title,
                message="\n".join(lines),
                data={"changes": lines},
            ),
            dedupe=False,
        )
