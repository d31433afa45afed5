"""
Workflow primitives: clocks, timestamp helpers and the workflow starter.

A durable unit of work never sleeps on a timer it cannot recover; it
persists a due time and lets a worker pick it up. The clock abstraction
lets the same code run against wall time in production and against a
manually advanced clock in tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar

T = TypeVar("T")


def to_iso(moment: datetime) -> str:
    """Serialize an aware datetime as an ISO 8601 UTC string."""
    return moment.astimezone(timezone.utc).isoformat()


def from_iso(value: str) -> datetime:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Clock(Protocol):
    """Source of the current time and of suspension until a due time."""

    def now(self) -> datetime:
        ...

    async def sleep_until(self, moment: datetime) -> None:
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep_until(self, moment: datetime) -> None:
        delay = (moment - self.now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)


class ManualClock:
    """Clock that only moves when told to. Sleeping jumps straight to the due time."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    async def sleep_until(self, moment: datetime) -> None:
        if moment > self._now:
            self._now = moment
        # still yield so concurrent tasks interleave as they would in production
        await asyncio.sleep(0)


class WorkflowRun(Generic[T]):
    """Handle for a started unit of work."""

    def __init__(self, run_id: str, task: "asyncio.Task[T]") -> None:
        self.run_id = run_id
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    async def return_value(self) -> T:
        """Wait for the unit to finish; its exception propagates to the caller."""
        return await self._task


class WorkflowStarter:
    """
    Starts durable units of work as independent asyncio tasks.

    ``start`` returns immediately; each run is awaited separately through
    its handle so one failing unit cannot take down the others.
    """

    def __init__(self) -> None:
        self._counter = 0

    def start(
        self,
        workflow_fn: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> WorkflowRun[T]:
        self._counter += 1
        name = getattr(workflow_fn, "__name__", "workflow")
        run_id = f"{name}-{self._counter}"
        task = asyncio.ensure_future(workflow_fn(*args))
        return WorkflowRun(run_id, task)
