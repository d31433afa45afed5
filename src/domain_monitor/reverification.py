"""
Periodic re-verification of verified domains.

The sweep walks every verified, non-archived domain in fixed-size batches.
Batches run one after another; the domains inside a batch are checked
concurrently, each as an independent unit whose failure is counted rather
than propagated.

A failed re-check does not revoke immediately. The domain moves to
``failing`` and keeps ``verified=True`` for a grace period; only a domain
still failing once the grace period has elapsed is revoked.

A domain that passes its re-check gets its snapshot refreshed and, after
that, its domain and certificate expiry dates checked for alerts.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from .audit_logger import AuditLogger, ComponentLogger
from .change_detection import ChangeRecord
from .config import SweepConfig
from .enums import (
    FailureAction,
    NotificationCategory,
    NotificationType,
    UnitOutcome,
    VerificationMethod,
    VerificationStatus,
)
from .exceptions import ConcurrencyConflict, NotFoundError, TransientNetworkError
from .expiry import ExpiryCheck, ExpiryMonitor
from .models import TrackedDomain
from .monitoring import ChangeMonitor
from .notifications import NotificationPayload, NotificationService
from .state_store import StateStore
from .verification import VerificationEngine
from .workflow import Clock, SystemClock, WorkflowRun, WorkflowStarter, from_iso


@dataclass
class ReverifyOutcome:
    """Result of re-checking one domain."""

    tracked_domain_id: str
    verified: bool
    method: Optional[VerificationMethod] = None
    action: Optional[FailureAction] = None
    skipped: Optional[str] = None
    changes: Optional[ChangeRecord] = None
    expiry: list[ExpiryCheck] = field(default_factory=list)


@dataclass
class PendingReport:
    """Second pass over unverified domains whose auto-verify schedule ended."""

    scheduled: int = 0
    verified: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"scheduled": self.scheduled, "verified": self.verified, "failed": self.failed}


@dataclass
class SweepReport:
    """
    Aggregate counts for one sweep.

    ``successful`` includes units that hit a concurrency conflict; those are
    also counted in ``conflicts`` so audits can tell a confirmed re-check
    from a no-op.
    """

    scheduled: int = 0
    successful: int = 0
    failed: int = 0
    conflicts: int = 0
    batches: list[int] = field(default_factory=list)
    actions: dict[str, int] = field(default_factory=dict)
    pending: Optional[PendingReport] = None

    def to_dict(self) -> dict:
        data = {
            "scheduled": self.scheduled,
            "successful": self.successful,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "actions": dict(self.actions),
        }
        if self.pending is not None:
            data["pending"] = self.pending.to_dict()
        return data


def partition(ids: list[str], batch_size: int) -> list[list[str]]:
    """Split ``ids`` into consecutive batches of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [ids[i:i + batch_size] for i in range(0, len(ids), batch_size)]


class ReverificationSweep:
    """Batched re-verification with grace-period handling."""

    def __init__(
        self,
        store: StateStore,
        engine: VerificationEngine,
        notifier: Optional[NotificationService] = None,
        change_monitor: Optional[ChangeMonitor] = None,
        config: Optional[SweepConfig] = None,
        starter: Optional[WorkflowStarter] = None,
        clock: Optional[Clock] = None,
        logger: Optional[AuditLogger] = None,
        expiry_monitor: Optional[ExpiryMonitor] = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._notifier = notifier
        self._change_monitor = change_monitor
        self._expiry_monitor = expiry_monitor
        self._config = config or SweepConfig()
        self._starter = starter or WorkflowStarter()
        self._clock = clock or SystemClock()
        self._log = ComponentLogger(logger, "ReverificationSweep")

    async def run(self) -> SweepReport:
        """Re-check all verified domains, then (optionally) pending ones."""
        ids = self._store.get_verified_tracked_domain_ids()
        report = SweepReport(scheduled=len(ids))
        self._log.info("Re-verification sweep started", {"scheduled": len(ids), "batch_size": self._config.batch_size})

        for batch in partition(ids, self._config.batch_size):
            report.batches.append(len(batch))
            runs = [(tracked_domain_id, self._starter.start(self.reverify_domain, tracked_domain_id))
                    for tracked_domain_id in batch]
            results = await asyncio.gather(
                *(self._await_unit(tracked_domain_id, run) for tracked_domain_id, run in runs)
            )

            for unit_outcome, outcome in results:
                if unit_outcome == UnitOutcome.FAILED:
                    report.failed += 1
                    continue
                report.successful += 1
                if unit_outcome == UnitOutcome.CONFLICT:
                    report.conflicts += 1
                elif outcome is not None and outcome.action is not None:
                    key = outcome.action.value
                    report.actions[key] = report.actions.get(key, 0) + 1

        if self._config.include_pending:
            report.pending = await self._verify_pending()

        self._log.info("Re-verification sweep complete", report.to_dict())
        return report

    async def _await_unit(
        self,
        tracked_domain_id: str,
        run: WorkflowRun,
    ) -> tuple[UnitOutcome, Optional[ReverifyOutcome]]:
        try:
            return UnitOutcome.CONFIRMED, await run.return_value()
        except ConcurrencyConflict:
            # another worker already wrote this domain's state
            self._log.debug("Re-verification unit lost a race", {"tracked_domain_id": tracked_domain_id})
            return UnitOutcome.CONFLICT, None
        except Exception as e:
            self._log.error(
                "Re-verification unit failed",
                error=e,
                data={"tracked_domain_id": tracked_domain_id, "run_id": run.run_id},
            )
            return UnitOutcome.FAILED, None

    async def reverify_domain(self, tracked_domain_id: str) -> ReverifyOutcome:
        """
        Re-check one domain with the method it was verified with.

        Raises:
            ConcurrencyConflict: If the domain changed between read and write
        """
        domain = self._store.find_tracked_domain_by_id(tracked_domain_id)
        if domain is None or not domain.verified or domain.archived_at is not None:
            return ReverifyOutcome(tracked_domain_id, verified=False, skipped="invalid_state")
        if not domain.verification_token:
            return ReverifyOutcome(tracked_domain_id, verified=False, skipped="missing_token")

        result = await self._engine.verify(
            domain.domain_name,
            domain.verification_token,
            method=domain.verification_method,
        )

        if result.verified:
            if domain.verification_status == VerificationStatus.FAILING:
                self._log.info("Verification recovered", {"tracked_domain_id": domain.id, "domain": domain.domain_name})
            self._store.mark_verification_successful(domain.id, expected_version=domain.version)
            changes = await self._monitor_changes(domain)
            expiry = await self._check_expiry(domain)
            return ReverifyOutcome(
                domain.id, verified=True, method=result.method, changes=changes, expiry=expiry,
            )

        action = await self._handle_failure(domain)
        return ReverifyOutcome(domain.id, verified=False, action=action)

    async def _handle_failure(self, domain: TrackedDomain) -> FailureAction:
        now = self._clock.now()

        if domain.verification_status == VerificationStatus.VERIFIED:
            self._store.mark_verification_failing(domain.id, now, expected_version=domain.version)
            self._log.warn("Verification failing", {"tracked_domain_id": domain.id, "domain": domain.domain_name})
            await self._notify(
                domain,
                NotificationType.VERIFICATION_FAILING,
                f"Verification failing for {domain.domain_name}",
                f"Verification for {domain.domain_name} is failing. You have "
                f"{self._config.grace_period_days} days to fix it before access is revoked.",
            )
            return FailureAction.MARKED_FAILING

        if domain.verification_failed_at is None:
            self._store.mark_verification_failing(domain.id, now, expected_version=domain.version)
            return FailureAction.MARKED_FAILING

        days_failing = (now - from_iso(domain.verification_failed_at)).days
        if days_failing >= self._config.grace_period_days:
            self._store.revoke_verification(domain.id, expected_version=domain.version)
            self._log.warn(
                "Verification revoked",
                {"tracked_domain_id": domain.id, "domain": domain.domain_name, "days_failing": days_failing},
            )
            await self._notify(
                domain,
                NotificationType.VERIFICATION_REVOKED,
                f"Verification revoked for {domain.domain_name}",
                f"Verification for {domain.domain_name} failed for {days_failing} days "
                f"and has been revoked. Verify the domain again to resume monitoring.",
            )
            return FailureAction.REVOKED

        return FailureAction.IN_GRACE_PERIOD

    async def _notify(
        self,
        domain: TrackedDomain,
        notification_type: NotificationType,
        title: str,
        message: str,
    ) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify(NotificationPayload(
            tracked_domain_id=domain.id,
            user_id=domain.owner_user_id,
            domain=domain.domain_name,
            category=NotificationCategory.VERIFICATION_STATUS,
            type=notification_type,
            title=title,
            message=message,
            data={"grace_period_days": self._config.grace_period_days},
        ))

    async def _monitor_changes(self, domain: TrackedDomain) -> Optional[ChangeRecord]:
        if self._change_monitor is None:
            return None
        try:
            return await self._change_monitor.check(domain)
        except TransientNetworkError as e:
            self._log.warn(
                "Snapshot refresh failed",
                {"tracked_domain_id": domain.id, "domain": domain.domain_name, "error_code": e.code},
            )
            return None

    async def _check_expiry(self, domain: TrackedDomain) -> list[ExpiryCheck]:
        # runs after the snapshot refresh, so it reads the freshest dates
        if self._expiry_monitor is None:
            return []
        return await self._expiry_monitor.check(domain)

    async def _verify_pending(self) -> PendingReport:
        """Try unverified domains that no auto-verify schedule still owns."""
        ids = [
            tracked_domain_id
            for tracked_domain_id in self._store.get_pending_tracked_domain_ids()
            if self._store.find_active_workflow(tracked_domain_id) is None
        ]
        report = PendingReport(scheduled=len(ids))

        for batch in partition(ids, self._config.batch_size):
            runs = [self._starter.start(self.verify_pending_domain, tracked_domain_id)
                    for tracked_domain_id in batch]
            results = await asyncio.gather(
                *(run.return_value() for run in runs), return_exceptions=True
            )
            for tracked_domain_id, result in zip(batch, results):
                if isinstance(result, ConcurrencyConflict):
                    continue
                if isinstance(result, Exception):
                    report.failed += 1
                    self._log.error(
                        "Pending verification unit failed",
                        error=result,
                        data={"tracked_domain_id": tracked_domain_id},
                    )
                elif result:
                    report.verified += 1
        return report

    async def verify_pending_domain(self, tracked_domain_id: str) -> bool:
        domain = self._store.find_tracked_domain_by_id(tracked_domain_id)
        if (
            domain is None
            or domain.verified
            or domain.archived_at is not None
            or not domain.verification_token
        ):
            return False

        result = await self._engine.verify(domain.domain_name, domain.verification_token)
        if not result.verified or result.method is None:
            return False

        try:
            self._store.verify_tracked_domain(domain.id, result.method, expected_version=domain.version)
        except NotFoundError:
            return False
        self._log.info(
            "Pending domain verified by sweep",
            {"tracked_domain_id": domain.id, "domain": domain.domain_name, "method": result.method.value},
        )
        if self._change_monitor is not None:
            await self._change_monitor.initialize_snapshot(domain)
        return True
