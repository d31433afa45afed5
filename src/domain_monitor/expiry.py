"""
Expiry alerts for verified domains.

Reads the stored snapshot: the RDAP expiration date for the domain itself,
and ``valid_to`` of the leaf certificate. Each side has fixed thresholds in
days; the alert sent is the one for the smallest threshold the remaining
time falls under, so a domain moving from 20 to 6 days left gets the 14d
alert and then the 7d one.

Once the remaining time is back above the widest threshold (the domain or
certificate was renewed), earlier alerts of that kind are cleared so they
fire again on the way to the next expiry.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Sequence

from .audit_logger import AuditLogger, ComponentLogger
from .enums import NotificationCategory, NotificationType
from .models import Snapshot, TrackedDomain
from .notifications import NotificationPayload, NotificationService
from .workflow import Clock, SystemClock, from_iso

if TYPE_CHECKING:
    from .state_store import StateStore

DOMAIN_EXPIRY_THRESHOLDS = (30, 14, 7, 1)
CERTIFICATE_EXPIRY_THRESHOLDS = (14, 7, 3, 1)


@dataclass(frozen=True)
class ExpiryKind:
    category: NotificationCategory
    thresholds: tuple[int, ...]
    label: str  # "Domain" / "Certificate"

    @property
    def notification_types(self) -> list[NotificationType]:
        return [NotificationType(f"{self.category.value}_{t}d") for t in self.thresholds]


DOMAIN_EXPIRY = ExpiryKind(NotificationCategory.DOMAIN_EXPIRY, DOMAIN_EXPIRY_THRESHOLDS, "Domain")
CERTIFICATE_EXPIRY = ExpiryKind(
    NotificationCategory.CERTIFICATE_EXPIRY, CERTIFICATE_EXPIRY_THRESHOLDS, "Certificate"
)


def expiry_threshold(days_remaining: int, thresholds: Sequence[int]) -> Optional[int]:
    """Smallest threshold with ``days_remaining <= threshold``, or None."""
    for threshold in sorted(thresholds):
        if days_remaining <= threshold:
            return threshold
    return None


def days_until(expires_at: datetime, now: datetime) -> int:
    """Whole days left; negative once expired."""
    return (expires_at - now).days


@dataclass
class ExpiryCheck:
    """What one expiry check did for one kind."""

    category: NotificationCategory
    days_remaining: Optional[int] = None
    notification_type: Optional[NotificationType] = None
    sent: bool = False
    skipped: Optional[str] = None  # 'no_date', 'no_threshold_met', 'renewed', 'disabled', 'duplicate'
    cleared: int = 0


class ExpiryMonitor:
    """Sends domain and certificate expiry alerts from stored snapshots."""

    def __init__(
        self,
        store: "StateStore",
        notifier: NotificationService,
        clock: Optional[Clock] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._log = ComponentLogger(logger, "ExpiryMonitor")

    async def check(self, domain: TrackedDomain) -> list[ExpiryCheck]:
        """Check both expiry kinds against the domain's stored snapshot."""
        snapshot = self._store.get_snapshot(domain.id)
        return [
            await self.check_kind(domain, DOMAIN_EXPIRY, _domain_expires_at(snapshot)),
            await self.check_kind(domain, CERTIFICATE_EXPIRY, _certificate_expires_at(snapshot)),
        ]

    async def check_kind(
        self,
        domain: TrackedDomain,
        kind: ExpiryKind,
        expires_at: Optional[str],
    ) -> ExpiryCheck:
        result = ExpiryCheck(category=kind.category)
        if not expires_at:
            result.skipped = "no_date"
            return result

        days = days_until(from_iso(expires_at), self._clock.now())
        result.days_remaining = days

        if days > max(kind.thresholds):
            result.skipped = "renewed"
            result.cleared = self._store.clear_notifications(
                domain.id, [t.value for t in kind.notification_types]
            )
            if result.cleared:
                self._log.info(
                    "Expiry alerts cleared after renewal",
                    {"tracked_domain_id": domain.id, "category": kind.category.value, "cleared": result.cleared},
                )
            return result

        threshold = expiry_threshold(days, kind.thresholds)
        if threshold is None:
            result.skipped = "no_threshold_met"
            return result

        result.notification_type = NotificationType(f"{kind.category.value}_{threshold}d")
        report = await self._notifier.notify(NotificationPayload(
            tracked_domain_id=domain.id,
            user_id=domain.owner_user_id,
            domain=domain.domain_name,
            category=kind.category,
            type=result.notification_type,
            title=_title(kind, domain.domain_name, days),
            message=_message(kind, domain.domain_name, days, expires_at),
            data={"days_remaining": days, "threshold_days": threshold, "expires_at": expires_at},
        ))
        if report.skipped_reason:
            result.skipped = report.skipped_reason
            return result

        result.sent = True
        self._log.info(
            "Expiry alert sent",
            {
                "tracked_domain_id": domain.id,
                "domain": domain.domain_name,
                "type": result.notification_type.value,
                "days_remaining": days,
            },
        )
        return result


def _domain_expires_at(snapshot: Optional[Snapshot]) -> Optional[str]:
    return snapshot.registration.expiration_date if snapshot else None


def _certificate_expires_at(snapshot: Optional[Snapshot]) -> Optional[str]:
    if snapshot is None or snapshot.certificate is None:
        return None
    return snapshot.certificate.valid_to


def _title(kind: ExpiryKind, name: str, days: int) -> str:
    if days < 0:
        return f"{kind.label} for {name} has expired"
    if days == 0:
        return f"{kind.label} for {name} expires today"
    return f"{kind.label} for {name} expires in {days} day{'s' if days != 1 else ''}"


def _message(kind: ExpiryKind, name: str, days: int, expires_at: str) -> str:
    what = "registration" if kind.category == NotificationCategory.DOMAIN_EXPIRY else "TLS certificate"
    if days < 0:
        return f"The {what} for {name} expired on {expires_at}."
    return f"The {what} for {name} expires on {expires_at}. Renew it to avoid an outage."
