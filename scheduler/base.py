"""
Daily Job Scheduler — fires a body once a day at a wall-clock time.

States:
  stopped ──start()──▶ armed ──timer──▶ running ──done──▶ armed
     ▲                   │
     └──────stop()───────┘

Fire times are computed by croniter from a daily `M H * * *` expression in
the configured timezone.

A fire that arrives while the body is still running (timer racing a manual
trigger) is skipped and logged, never queued behind the running one.
"""
from __future__ import annotations

import asyncio
import structlog
from abc import ABC, abstractmethod
from croniter import croniter
from datetime import datetime, time
from enum import Enum
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

logger = structlog.get_logger()


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    ARMED = "armed"
    RUNNING = "running"


def parse_time_of_day(value: str) -> time:
    """Parse 'HH:MM' into a time."""
    try:
        hour, minute = value.strip().split(":")
        return time(int(hour), int(minute))
    except ValueError as e:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM") from e


class DailyJobScheduler(ABC):
    """
    Base for schedulers that run a body daily at `run_at` in `timezone`.
    Subclasses implement `run()` and return a summary dict.
    """

    name = "daily"

    def __init__(self, run_at: str, timezone: str,
                 now: Optional[Callable[[ZoneInfo], datetime]] = None):
        self.run_at = parse_time_of_day(run_at)
        self.tz = ZoneInfo(timezone)
        self._now = now or (lambda tz: datetime.now(tz))
        self._timer: Optional[asyncio.Task] = None
        self._fires: set[asyncio.Task] = set()
        self._busy = False
        self.last_run: Optional[datetime] = None
        self.last_summary: Optional[dict[str, Any]] = None

    @property
    def state(self) -> SchedulerState:
        if self._busy:
            return SchedulerState.RUNNING
        if self._timer is not None and not self._timer.done():
            return SchedulerState.ARMED
        return SchedulerState.STOPPED

    @property
    def cron_expr(self) -> str:
        return f"{self.run_at.minute} {self.run_at.hour} * * *"

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        """First fire time strictly after `after` (default: now), in the scheduler timezone."""
        after = (after or self._now(self.tz)).astimezone(self.tz)
        nxt = croniter(self.cron_expr, after).get_next(datetime)
        if nxt.tzinfo is None:
            return nxt.replace(tzinfo=self.tz)
        return nxt.astimezone(self.tz)

    async def start(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        self._timer = asyncio.create_task(self._timer_loop(), name=f"{self.name}-timer")
        logger.info("scheduler_started", scheduler=self.name,
                    run_at=self.run_at.strftime("%H:%M"), timezone=str(self.tz),
                    next_run=self.next_run().isoformat())

    async def stop(self) -> None:
        """Disarm the timer. A body already running is allowed to finish."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._fires:
            await asyncio.gather(*self._fires, return_exceptions=True)
        logger.info("scheduler_stopped", scheduler=self.name)

    async def _timer_loop(self):
        last_target: Optional[datetime] = None
        while True:
            now = self._now(self.tz)
            # a wall clock stepped back after a fire must not reach the same slot again
            target = self.next_run(max(now, last_target) if last_target else now)
            delay = (target - now).total_seconds()
            await asyncio.sleep(max(delay, 0))
            last_target = target
            task = asyncio.create_task(self._fire())
            self._fires.add(task)
            task.add_done_callback(self._fires.discard)

    async def trigger(self) -> Optional[dict[str, Any]]:
        """Run the body now, under the same overlap guard as the timer."""
        logger.info("scheduler_manual_trigger", scheduler=self.name)
        return await self._fire()

    async def _fire(self) -> Optional[dict[str, Any]]:
        if self._busy:
            logger.warning("scheduler_overlap_skipped", scheduler=self.name)
            return None
        self._busy = True
        try:
            summary = await self.run()
            self.last_summary = summary
            return summary
        except Exception as e:
            logger.error("scheduler_run_error", scheduler=self.name, error=str(e), exc_info=True)
            return None
        finally:
            self._busy = False
            self.last_run = self._now(self.tz)

    @abstractmethod
    async def run(self) -> dict[str, Any]:
        """Do the daily work and return a summary."""
        ...
