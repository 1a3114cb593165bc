"""
ECAN — Cycle Scheduler

Explicit replacement for ambient interval timers. Recurring callbacks are
registered by name with an interval and return a handle that cancels them.
``tick()`` runs every job that is due on the injected clock, so tests drive
the cadence with a ``ManualClock`` and no wall-clock delays. ``start()``
runs the same tick in a background loop.

Callback failures are caught, counted and logged. The loop never dies.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger("ecan.systems.cadence.clock")

ScheduledCallback = Callable[[], Awaitable[Any]]

# Back-off after an unexpected loop failure (seconds)
_ERROR_BACKOFF_S: float = 0.5


# ─── Clock Sources ────────────────────────────────────────────────────


@runtime_checkable
class ClockSource(Protocol):
    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    """Wall-clock source backed by ``time.monotonic``."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """Clock that only moves when told to. Sleeping advances it."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += seconds
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.advance(max(0.0, seconds))
        # Yield so other tasks can observe the new time
        await asyncio.sleep(0)


# ─── Jobs ─────────────────────────────────────────────────────────────


class ScheduleHandle:
    """A registered recurring callback. ``cancel()`` stops future runs."""

    def __init__(self, name: str, interval_s: float, callback: ScheduledCallback, next_due: float) -> None:
        self.name = name
        self.interval_s = interval_s
        self.next_due = next_due
        self.runs: int = 0
        self.errors: int = 0
        self.last_error: str | None = None
        self._callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else f"every {self.interval_s:g}s"
        return f"ScheduleHandle({self.name!r}, {state})"


class CycleScheduler:
    """
    Runs named callbacks at fixed intervals on a clock source.

    Missed intervals are coalesced: a job that fell several intervals
    behind runs once and is rescheduled one interval after ``now``.
    """

    def __init__(self, clock: ClockSource | None = None, poll_interval_s: float = 0.25) -> None:
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")
        self._clock: ClockSource = clock or MonotonicClock()
        self._poll_interval_s = poll_interval_s
        self._jobs: dict[str, ScheduleHandle] = {}
        self._logger = logger.bind(component="cycle_scheduler")

        self._ticks: int = 0
        self._runs: int = 0
        self._errors: int = 0
        self._coalesced: int = 0

        self._running: bool = False
        self._task: asyncio.Task[None] | None = None

    @property
    def clock(self) -> ClockSource:
        return self._clock

    @property
    def poll_interval_s(self) -> float:
        return self._poll_interval_s

    @property
    def running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> list[ScheduleHandle]:
        return [job for job in self._jobs.values() if not job.cancelled]

    # ─── Registration ────────────────────────────────────────────────

    def schedule(
        self,
        name: str,
        interval_s: float,
        callback: ScheduledCallback,
        run_immediately: bool = False,
    ) -> ScheduleHandle:
        """
        Register ``callback`` to run every ``interval_s`` seconds.

        Re-using a name replaces (and cancels) the earlier job.
        """
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        existing = self._jobs.get(name)
        if existing is not None:
            existing.cancel()
            self._logger.info("schedule_replaced", name=name)

        now = self._clock.now()
        handle = ScheduleHandle(
            name=name,
            interval_s=interval_s,
            callback=callback,
            next_due=now if run_immediately else now + interval_s,
        )
        self._jobs[name] = handle
        self._logger.info("schedule_registered", name=name, interval_s=interval_s)
        return handle

    def cancel(self, name: str) -> bool:
        handle = self._jobs.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        self._logger.info("schedule_cancelled", name=name)
        return True

    # ─── Ticking ─────────────────────────────────────────────────────

    async def tick(self) -> int:
        """Run every due job once, in due order. Returns how many ran."""
        self._ticks += 1
        self._jobs = {name: job for name, job in self._jobs.items() if not job.cancelled}
        now = self._clock.now()
        due = sorted(
            (job for job in self._jobs.values() if job.next_due <= now),
            key=lambda job: job.next_due,
        )

        ran = 0
        for job in due:
            # A callback earlier in this tick may have cancelled it
            if job.cancelled:
                continue
            await self._run_job(job)
            ran += 1

            job.next_due += job.interval_s
            if job.next_due <= now:
                self._coalesced += 1
                job.next_due = now + job.interval_s
        return ran

    async def _run_job(self, job: ScheduleHandle) -> None:
        try:
            await job._callback()
            job.runs += 1
            self._runs += 1
        except Exception as exc:
            job.errors += 1
            job.last_error = str(exc)
            self._errors += 1
            self._logger.error(
                "scheduled_callback_error",
                name=job.name,
                error=str(exc),
                error_count=job.errors,
            )

    # ─── Background Loop ─────────────────────────────────────────────

    def start(self) -> asyncio.Task[None]:
        """Start ticking in the background. Returns the task handle."""
        if self._running:
            raise RuntimeError("Scheduler is already running")
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="ecan_cycle_scheduler")
        self._logger.info("scheduler_started", jobs=len(self.jobs), poll_interval_s=self._poll_interval_s)
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        self._logger.info("scheduler_stopped", ticks=self._ticks, runs=self._runs, errors=self._errors)

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
                await self._clock.sleep(self._poll_interval_s)
            except asyncio.CancelledError:
                return
            except Exception as exc:
                self._errors += 1
                self._logger.error("scheduler_loop_error", error=str(exc))
                await self._clock.sleep(_ERROR_BACKOFF_S)

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "jobs": len(self.jobs),
            "ticks": self._ticks,
            "runs": self._runs,
            "errors": self._errors,
            "coalesced": self._coalesced,
        }
