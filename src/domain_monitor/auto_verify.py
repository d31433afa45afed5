"""
Automatic verification after a domain is added.

A schedule is a persisted WorkflowRecord, not a sleeping coroutine: the
record says which slot runs next and when it is due, and any worker that
polls the store can pick it up. Slots follow a fixed backoff (1m, 3m, 10m,
30m, 1h by default). Each slot re-reads the domain from the store, so a
domain deleted or verified elsewhere cancels the schedule on its next slot.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from .audit_logger import AuditLogger, ComponentLogger
from .config import AutoVerifyConfig
from .enums import CancelReason, VerificationMethod, WorkflowState
from .exceptions import ConcurrencyConflict, NotFoundError, PersistentFailure
from .models import WorkflowRecord
from .state_store import StateStore
from .verification import VerificationEngine
from .workflow import Clock, SystemClock, from_iso, to_iso

if TYPE_CHECKING:
    from .monitoring import ChangeMonitor

EXHAUSTED_MESSAGE = "Verification schedule complete. Daily sweep will retry."


@dataclass
class AutoVerifyResult:
    """Terminal outcome of one auto-verify schedule."""

    result: str  # 'verified', 'cancelled', 'exhausted'
    workflow_id: str
    tracked_domain_id: str
    attempt: Optional[int] = None
    verified_method: Optional[VerificationMethod] = None
    reason: Optional[CancelReason] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "result": self.result,
            "workflow_id": self.workflow_id,
            "tracked_domain_id": self.tracked_domain_id,
            "attempt": self.attempt,
            "verified_method": self.verified_method.value if self.verified_method else None,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AutoVerifyResult":
        method = data.get("verified_method")
        reason = data.get("reason")
        return cls(
            result=data["result"],
            workflow_id=data["workflow_id"],
            tracked_domain_id=data["tracked_domain_id"],
            attempt=data.get("attempt"),
            verified_method=VerificationMethod(method) if method else None,
            reason=CancelReason(reason) if reason else None,
            message=data.get("message"),
        )


@dataclass
class PollReport:
    """What one poll over due records did."""

    started: int = 0
    successful: int = 0
    failed: int = 0
    completed: list[AutoVerifyResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started": self.started,
            "successful": self.successful,
            "failed": self.failed,
        }


_TERMINAL_STATES = {
    "verified": WorkflowState.VERIFIED,
    "cancelled": WorkflowState.CANCELLED,
    "exhausted": WorkflowState.EXHAUSTED,
}


class AutoVerifyScheduler:
    """
    Durable backoff schedule driving VerificationEngine for new domains.

    Within one schedule, slots run strictly one after another: a slot's
    record is only advanced after its check has finished, and the advance is
    conditional on the slot still being the current one.
    """

    def __init__(
        self,
        store: StateStore,
        engine: VerificationEngine,
        config: Optional[AutoVerifyConfig] = None,
        clock: Optional[Clock] = None,
        logger: Optional[AuditLogger] = None,
        change_monitor: Optional["ChangeMonitor"] = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._change_monitor = change_monitor
        self._config = config or AutoVerifyConfig()
        self._clock = clock or SystemClock()
        self._log = ComponentLogger(logger, "AutoVerifyScheduler")

        if not self._config.delays_seconds:
            raise ValueError("Auto-verify schedule needs at least one delay")

    @property
    def max_attempts(self) -> int:
        return len(self._config.delays_seconds)

    def _delay(self, attempt_index: int) -> timedelta:
        return timedelta(seconds=self._config.delays_seconds[attempt_index])

    def schedule(self, tracked_domain_id: str) -> WorkflowRecord:
        """
        Start a schedule for a domain, or return the one already running.

        The first slot becomes due after the first delay.
        """
        active = self._store.find_active_workflow(tracked_domain_id)
        if active is not None:
            return active

        now = self._clock.now()
        record = WorkflowRecord(
            workflow_id=f"auto-verify-{uuid.uuid4().hex}",
            tracked_domain_id=tracked_domain_id,
            attempt_index=0,
            next_due_at=to_iso(now + self._delay(0)),
            created_at=to_iso(now),
        )
        self._store.save_workflow(record)
        self._log.info(
            "Auto-verify scheduled",
            {
                "workflow_id": record.workflow_id,
                "tracked_domain_id": tracked_domain_id,
                "next_due_at": record.next_due_at,
            },
        )
        return record

    async def run_attempt(self, workflow_id: str) -> Optional[AutoVerifyResult]:
        """
        Run the current slot of a schedule if it is due.

        Returns:
            The terminal result once the schedule has ended, or None while
            it is still running (including when the slot is not yet due)

        A slot whose check raises is still consumed, so a persistent error
        cannot keep a schedule on the same slot forever.

        Raises:
            NotFoundError: If no such workflow exists
            ConcurrencyConflict: If another worker advanced the slot first
            Exception: Whatever the check raised, after the slot was consumed
        """
        record = self._store.get_workflow(workflow_id)
        if record is None:
            raise NotFoundError(
                code="workflow_not_found",
                message=f"Workflow {workflow_id} does not exist",
                details={"workflow_id": workflow_id},
            )

        if record.state != WorkflowState.SCHEDULED:
            return AutoVerifyResult.from_dict(record.result or {})

        if from_iso(record.next_due_at) > self._clock.now():
            return None

        slot = record.attempt_index
        failure: Optional[Exception] = None
        try:
            result = await self._check(record)
        except ConcurrencyConflict:
            raise
        except Exception as e:
            failure = e
            result = None

        if result is None:
            if slot + 1 >= self.max_attempts:
                result = AutoVerifyResult(
                    result="exhausted",
                    workflow_id=record.workflow_id,
                    tracked_domain_id=record.tracked_domain_id,
                    message=EXHAUSTED_MESSAGE,
                )
                self._log.error(
                    "Auto-verify schedule exhausted",
                    error=PersistentFailure(
                        code="schedule_exhausted",
                        message=EXHAUSTED_MESSAGE,
                        details={"attempts": self.max_attempts},
                    ),
                    data={"workflow_id": record.workflow_id, "tracked_domain_id": record.tracked_domain_id},
                )
            else:
                record.attempt_index = slot + 1
                record.next_due_at = to_iso(self._clock.now() + self._delay(slot + 1))

        if result is not None:
            record.state = _TERMINAL_STATES[result.result]
            record.result = result.to_dict()

        self._store.save_workflow(record, expected_attempt_index=slot)
        if failure is not None:
            raise failure
        return result

    async def _check(self, record: WorkflowRecord) -> Optional[AutoVerifyResult]:
        """One slot: fresh read, cancellation checks, then a verification call."""
        attempt = record.attempt_index + 1
        domain = self._store.find_tracked_domain_by_id(record.tracked_domain_id)

        if domain is None:
            return self._cancelled(record, CancelReason.DOMAIN_DELETED)

        if domain.verified:
            return self._cancelled(record, CancelReason.ALREADY_VERIFIED)

        if not domain.verification_token or domain.archived_at is not None:
            # slot is consumed without a check
            self._log.warn(
                "Skipping auto-verify slot",
                {
                    "tracked_domain_id": domain.id,
                    "attempt": attempt,
                    "archived": domain.archived_at is not None,
                },
            )
            return None

        outcome = await self._engine.verify(domain.domain_name, domain.verification_token)
        if not outcome.verified or outcome.method is None:
            self._log.debug(
                "Auto-verify attempt did not verify",
                {"tracked_domain_id": domain.id, "domain": domain.domain_name, "attempt": attempt},
            )
            return None

        try:
            self._store.verify_tracked_domain(domain.id, outcome.method)
        except NotFoundError:
            return self._cancelled(record, CancelReason.DOMAIN_DELETED)

        self._log.info(
            "Domain verified by auto-verify",
            {
                "tracked_domain_id": domain.id,
                "domain": domain.domain_name,
                "attempt": attempt,
                "method": outcome.method.value,
            },
        )
        if self._change_monitor is not None:
            await self._change_monitor.initialize_snapshot(domain)
        return AutoVerifyResult(
            result="verified",
            workflow_id=record.workflow_id,
            tracked_domain_id=record.tracked_domain_id,
            attempt=attempt,
            verified_method=outcome.method,
        )

    def _cancelled(self, record: WorkflowRecord, reason: CancelReason) -> AutoVerifyResult:
        self._log.info(
            "Auto-verify cancelled",
            {"workflow_id": record.workflow_id, "tracked_domain_id": record.tracked_domain_id, "reason": reason.value},
        )
        return AutoVerifyResult(
            result="cancelled",
            workflow_id=record.workflow_id,
            tracked_domain_id=record.tracked_domain_id,
            reason=reason,
        )

    async def run(self, tracked_domain_id: str) -> AutoVerifyResult:
        """
        Drive one schedule to its end in this process.

        Suspension happens through the clock, and all progress lives in the
        store, so a restarted process (or a polling worker) continues from
        the persisted slot.
        """
        record = self.schedule(tracked_domain_id)
        while True:
            await self._clock.sleep_until(from_iso(record.next_due_at))
            try:
                result = await self.run_attempt(record.workflow_id)
            except ConcurrencyConflict:
                result = None
            if result is not None:
                return result

            refreshed = self._store.get_workflow(record.workflow_id)
            if refreshed is None:
                raise NotFoundError(
                    code="workflow_not_found",
                    message=f"Workflow {record.workflow_id} disappeared",
                    details={"workflow_id": record.workflow_id},
                )
            if refreshed.state != WorkflowState.SCHEDULED:
                return AutoVerifyResult.from_dict(refreshed.result or {})
            record = refreshed

    async def poll_due(self) -> PollReport:
        """
        Run every schedule whose current slot is due.

        Different schedules run concurrently; a failure in one is logged and
        counted without affecting the others.
        """
        due = self._store.list_due_workflows(self._clock.now())
        report = PollReport(started=len(due))
        if not due:
            return report

        outcomes = await asyncio.gather(
            *(self._run_isolated(record.workflow_id) for record in due)
        )
        for ok, result in outcomes:
            if ok:
                report.successful += 1
                if result is not None:
                    report.completed.append(result)
            else:
                report.failed += 1
        return report

    async def _run_isolated(self, workflow_id: str) -> tuple[bool, Optional[AutoVerifyResult]]:
        try:
            return True, await self.run_attempt(workflow_id)
        except ConcurrencyConflict:
            self._log.debug("Slot already handled by another worker", {"workflow_id": workflow_id})
            return True, None
        except Exception as e:
            self._log.error("Auto-verify attempt failed", error=e, data={"workflow_id": workflow_id})
            return False, None

    async def run_worker(
        self,
        stop_event: asyncio.Event,
        poll_interval_seconds: Optional[float] = None,
    ) -> None:
        """Poll for due slots until ``stop_event`` is set."""
        interval = poll_interval_seconds or self._config.poll_interval_seconds
        self._log.info("Auto-verify worker started", {"poll_interval_seconds": interval})

        while not stop_event.is_set():
            report = await self.poll_due()
            if report.started:
                self._log.info("Auto-verify poll complete", report.to_dict())
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        self._log.info("Auto-verify worker stopped")
