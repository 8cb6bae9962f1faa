"""
In-process trigger scheduler.

Two kinds of job are supported: fixed-interval ticks (the Discord poll)
and once-a-day jobs at a local wall-clock time (the morning release).
Jobs are keyed by name, so registering a name again replaces the earlier
registration instead of adding a second trigger.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from kairan_bridge.observability import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduledJob:
    """A registered trigger.

    Attributes:
        name: Unique job name.
        func: Callable run when the job is due.
        next_run: Next time (aware) the job is due.
        every: Interval for interval jobs.
        at: (hour, minute) local time for daily jobs.
        tz: Zone ``at`` is read in.
        last_run: When the job last started.
    """

    name: str
    func: Callable[[], object]
    next_run: datetime
    every: Optional[timedelta] = None
    at: Optional[tuple[int, int]] = None
    tz: str = "UTC"
    last_run: Optional[datetime] = None

    def advance(self, now: datetime) -> None:
        if self.every is not None:
            self.next_run = now + self.every
        else:
            self.next_run = next_daily_run(now, self.at, self.tz)

    def describe(self) -> str:
        if self.every is not None:
            return f"every {int(self.every.total_seconds() // 60)} min"
        hour, minute = self.at
        return f"daily at {hour:02d}:{minute:02d} {self.tz}"


def next_daily_run(now: datetime, at: tuple[int, int], tz: str) -> datetime:
    """Next instant strictly after ``now`` when the local clock in ``tz`` reads ``at``."""
    hour, minute = at
    local_now = now.astimezone(ZoneInfo(tz))
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate.astimezone(timezone.utc)


class Scheduler:
    """
    Register jobs and run whichever are due.

    Usage:
        scheduler = Scheduler()
        scheduler.register_interval("sync_relay", 10, app.sync_relay)
        scheduler.register_daily("flush_queue", 7, 5, app.flush_queue, tz="Asia/Tokyo")
        scheduler.run_forever()
    """

    def __init__(self, clock: Callable[[], datetime] = _now) -> None:
        self.clock = clock
        self._jobs: dict[str, ScheduledJob] = {}

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def get(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    def register_interval(self, name: str, minutes: int, func: Callable[[], object]) -> ScheduledJob:
        if minutes < 1:
            raise ValueError("Interval must be at least one minute")
        every = timedelta(minutes=minutes)
        job = ScheduledJob(name=name, func=func, next_run=self.clock() + every, every=every)
        self._replace(job)
        return job

    def register_daily(
        self,
        name: str,
        hour: int,
        minute: int,
        func: Callable[[], object],
        tz: str = "UTC",
    ) -> ScheduledJob:
        at = (hour, minute)
        job = ScheduledJob(
            name=name,
            func=func,
            next_run=next_daily_run(self.clock(), at, tz),
            at=at,
            tz=tz,
        )
        self._replace(job)
        return job

    def unregister(self, name: str) -> bool:
        return self._jobs.pop(name, None) is not None

    def _replace(self, job: ScheduledJob) -> None:
        if job.name in self._jobs:
            logger.info("Replacing existing trigger '%s'", job.name)
        self._jobs[job.name] = job
        logger.info("Trigger '%s' registered (%s), next run %s", job.name, job.describe(), job.next_run)

    def run_pending(self, now: Optional[datetime] = None) -> list[str]:
        """Run every due job once; return the names that ran."""
        now = now or self.clock()
        ran: list[str] = []
        for job in list(self._jobs.values()):
            if now < job.next_run:
                continue
            job.last_run = now
            job.advance(now)
            try:
                job.func()
            except Exception:
                # A failing job must not stop the scheduler loop
                logger.exception("Job '%s' failed", job.name)
            ran.append(job.name)
        return ran

    def run_forever(self, poll_seconds: float = 30.0, sleep: Callable[[float], None] = time.sleep) -> None:
        logger.info("Scheduler started with %d job(s)", len(self._jobs))
        while True:
            self.run_pending()
            sleep(poll_seconds)


def register_default_jobs(scheduler: Scheduler, app) -> None:
    """Install the Discord poll tick and the morning release for ``app``."""
    schedule = app.config.schedule
    scheduler.register_interval("sync_relay", schedule.poll_interval_minutes, app.sync_relay)
    scheduler.register_daily(
        "flush_queue",
        schedule.release_hour,
        schedule.release_minute,
        app.flush_queue,
        tz=app.config.night_window.timezone,
    )
