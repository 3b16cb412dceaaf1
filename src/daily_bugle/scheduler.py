"""Periodic generation with supersede-on-trigger and fixed-delay retry.

At most one batch runs at a time. A new trigger cancels the active run and
waits for it to unwind before starting, so two batches never overlap and the
cancelled one never publishes. Exactly one of the retry timer and the
next-run timer is armed while idle.

    Idle -> Scheduled(T) -> Running -> success -> Scheduled(next run)
                                    -> failure -> Scheduled(retry)
                                    -> cancelled (the superseding trigger owns the state)
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .config import AppConfig, FixedInterval, SchedulePolicy
from .generator import generate_all

logger = logging.getLogger(__name__)

GenerateFn = Callable[[AppConfig, Path], Awaitable[object]]
Clock = Callable[[], datetime]


class RunOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _local_now() -> datetime:
    return datetime.now().astimezone()


def next_daily_run(now: datetime, hour: int) -> datetime:
    """
    Today at ``hour``:00 local time if that is still ahead of ``now``, else tomorrow.

    The day is stepped on the local calendar and localized afterwards, so the
    wall-clock hour holds when the UTC offset changes overnight.
    """
    today = now.astimezone().date()
    target = datetime.combine(today, time(hour)).astimezone()
    if now >= target:
        target = datetime.combine(today + timedelta(days=1), time(hour)).astimezone()
    return target


def next_run_at(policy: SchedulePolicy, now: datetime) -> datetime:
    if isinstance(policy, FixedInterval):
        return now + policy.period
    return next_daily_run(now, policy.hour)


def describe_policy(policy: SchedulePolicy) -> str:
    if isinstance(policy, FixedInterval):
        startup = ", plus once at startup" if policy.run_on_startup else ""
        return f"Every {policy.interval_minutes:g} minutes{startup}"
    return f"Daily at {policy.hour:02d}:00"


def format_time(instant: datetime) -> str:
    return instant.strftime("%a, %b %d, %Y, %I:%M:%S %p")


class Scheduler:
    """Owns the generation timers and the single active run."""

    def __init__(
        self,
        config: AppConfig,
        public_dir: Path,
        *,
        generate: GenerateFn = generate_all,
        clock: Clock = _local_now,
    ):
        self.config = config
        self.policy: SchedulePolicy = config.schedule
        self.public_dir = Path(public_dir)
        self._generate = generate
        self._clock = clock
        self._active: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._next_handle: Optional[asyncio.TimerHandle] = None
        self.next_run_time: Optional[datetime] = None
        self.last_outcome: Optional[RunOutcome] = None

    @property
    def is_running(self) -> bool:
        return self._active is not None and not self._active.done()

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def next_run_pending(self) -> bool:
        return self._next_handle is not None

    @property
    def retry_delay(self) -> timedelta:
        return self.policy.retry_delay

    def start(self) -> Optional[asyncio.Task]:
        """Arm the first trigger; must be called from a running event loop."""
        logger.info("Scheduler initialized: %s", describe_policy(self.policy))
        logger.info("Retry interval on failure: %s", self.retry_delay)
        if isinstance(self.policy, FixedInterval) and self.policy.run_on_startup:
            return self.trigger("startup")
        self.schedule_next()
        return None

    def trigger(self, reason: str = "manual") -> asyncio.Task:
        """Start a new run, superseding any run still in flight."""
        previous = self._active
        if previous is not None and not previous.done():
            logger.info("Cancelling previous generation attempt...")
            previous.cancel()
        else:
            previous = None
        self._disarm_retry()
        self._disarm_next()
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._attempt(reason, previous))
        self._active = task
        return task

    def schedule_next(self) -> datetime:
        self._disarm_next()
        now = self._clock()
        at = next_run_at(self.policy, now)
        delay = (at - now).total_seconds()
        loop = asyncio.get_running_loop()
        self._next_handle = loop.call_later(delay, self._fire, "schedule")
        self.next_run_time = at
        logger.info(
            "Next generation scheduled for: %s (in %d minutes)",
            format_time(at),
            round(delay / 60),
        )
        return at

    def stop(self) -> None:
        """Disarm all timers and cancel the active run."""
        self._disarm_retry()
        self._disarm_next()
        self.next_run_time = None
        if self._active is not None and not self._active.done():
            self._active.cancel()

    async def shutdown(self) -> None:
        active = self._active
        self.stop()
        if active is not None:
            await asyncio.wait([active])
        logger.info("Scheduler stopped")

    def _fire(self, reason: str) -> asyncio.Task:
        if reason == "retry":
            self._retry_handle = None
        else:
            self._next_handle = None
        return self.trigger(reason)

    def _disarm_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _disarm_next(self) -> None:
        if self._next_handle is not None:
            self._next_handle.cancel()
            self._next_handle = None

    async def _attempt(self, reason: str, previous: Optional[asyncio.Task]) -> RunOutcome:
        try:
            if previous is not None:
                await asyncio.wait([previous])
            logger.info("Attempting content generation (%s)...", reason)
            await self._generate(self.config, self.public_dir)
        except asyncio.CancelledError:
            logger.info("Generation was cancelled")
            self.last_outcome = RunOutcome.CANCELLED
            raise
        except Exception as exc:
            logger.error("Error during content generation: %s", exc)
            self._on_failure()
            self.last_outcome = RunOutcome.FAILED
        else:
            logger.info("Content generation successful!")
            self._on_success()
            self.last_outcome = RunOutcome.SUCCEEDED
        finally:
            if self._active is asyncio.current_task():
                self._active = None
        return self.last_outcome

    def _on_success(self) -> None:
        self._disarm_retry()
        self.schedule_next()

    def _on_failure(self) -> None:
        self._disarm_retry()
        self._disarm_next()
        delay = self.retry_delay
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay.total_seconds(), self._fire, "retry")
        self.next_run_time = self._clock() + delay
        logger.info("Scheduling retry in %s (at %s)", delay, format_time(self.next_run_time))
