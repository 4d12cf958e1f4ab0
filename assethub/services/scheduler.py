"""
In-process scheduler for the expiry jobs.

A daemon thread wakes every ``poll_seconds`` and calls ``run_pending``, which
runs each job whose next occurrence has passed and then schedules the
following one. Schedules are wall-clock times in ``SCHEDULER_TIMEZONE``.
A failing job is logged and skipped; its next occurrence is the retry.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Callable, List, Optional

import pytz
import structlog
from sqlalchemy.orm import Session

from . import assets, lifecycle, notifications


logger = structlog.get_logger(__name__)

MONDAY = 0


class Hourly:
    def __init__(self, minute: int = 0):
        self.minute = minute

    def next_after(self, now: datetime, tz) -> datetime:
        local = now.astimezone(tz)
        candidate = local.replace(minute=self.minute, second=0, microsecond=0)
        if candidate <= local:
            candidate += timedelta(hours=1)
        return candidate.astimezone(pytz.utc)

    def __repr__(self):
        return f"Hourly(minute={self.minute})"


class Daily:
    def __init__(self, hour: int, minute: int = 0):
        self.hour = hour
        self.minute = minute

    def _matches(self, day) -> bool:
        return True

    def next_after(self, now: datetime, tz) -> datetime:
        day = now.astimezone(tz).date()
        while True:
            if self._matches(day):
                # localize() picks the right UTC offset across DST changes
                candidate = tz.localize(datetime.combine(day, time(self.hour, self.minute)))
                if candidate > now:
                    return candidate.astimezone(pytz.utc)
            day += timedelta(days=1)

    def __repr__(self):
        return f"Daily({self.hour:02d}:{self.minute:02d})"


class Weekly(Daily):
    def __init__(self, weekday: int, hour: int, minute: int = 0):
        super().__init__(hour, minute)
        self.weekday = weekday

    def _matches(self, day) -> bool:
        return day.weekday() == self.weekday

    def __repr__(self):
        return f"Weekly(weekday={self.weekday}, {self.hour:02d}:{self.minute:02d})"


@dataclass
class ScheduledJob:
    name: str
    schedule: object
    func: Callable[[Session, datetime], object]
    next_run: Optional[datetime] = None


def default_jobs(warning_days: int = 30) -> List[ScheduledJob]:
    def notify_soon(db, now):
        return notifications.send_expiry_notifications(db, warning_days, now)

    def sweep(db, now):
        return assets.sweep_expired(db, now)

    def notify_quarter(db, now):
        return notifications.send_expiry_notifications(db, 90, now)

    def notify_urgent(db, now):
        return notifications.send_expiry_notifications(db, 1, now)

    return [
        ScheduledJob("notify_expiring_soon", Daily(9, 0), notify_soon),
        ScheduledJob("sweep_expired", Daily(10, 0), sweep),
        ScheduledJob("notify_expiring_quarter", Weekly(MONDAY, 8, 0), notify_quarter),
        ScheduledJob("notify_expiring_urgent", Hourly(0), notify_urgent),
    ]


class ExpiryScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        tz: str = "UTC",
        poll_seconds: int = 30,
        jobs: Optional[List[ScheduledJob]] = None,
        warning_days: int = 30,
    ):
        self.session_factory = session_factory
        self.tz = pytz.timezone(tz) if isinstance(tz, str) else tz
        self.poll_seconds = max(1, int(poll_seconds))
        self.jobs = jobs if jobs is not None else default_jobs(warning_days)
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def schedule(self, now: Optional[datetime] = None) -> None:
        now = lifecycle.as_utc(now or lifecycle.utcnow())
        for job in self.jobs:
            job.next_run = job.schedule.next_after(now, self.tz)

    def run_job(self, job: ScheduledJob, now: datetime) -> bool:
        """Run one job in its own session. Returns False when it raised."""
        db = self.session_factory()
        try:
            result = job.func(db, now)
            logger.info("scheduled_job_completed", job=job.name, result=result)
            return True
        except Exception:
            db.rollback()
            logger.exception("scheduled_job_failed", job=job.name)
            return False
        finally:
            db.close()

    def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        """Run every due job once and return the names of those that ran."""
        now = lifecycle.as_utc(now or lifecycle.utcnow())
        ran = []
        with self._lock:
            for job in self.jobs:
                if job.next_run is None:
                    job.next_run = job.schedule.next_after(now, self.tz)
                    continue
                if job.next_run > now:
                    continue
                self.run_job(job, now)
                ran.append(job.name)
                # Missed occurrences collapse into this single run
                job.next_run = job.schedule.next_after(now, self.tz)
        return ran

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_pending()
            except Exception:
                logger.exception("scheduler_tick_failed")
            self._stop.wait(self.poll_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self.schedule()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="expiry-scheduler")
        self._thread.start()
        logger.info(
            "scheduler_started",
            timezone=str(self.tz),
            jobs={job.name: job.next_run.isoformat() for job in self.jobs},
        )

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("scheduler_stopped")
