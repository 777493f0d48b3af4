"""
Backup scheduler.

One timer per process, owned by the application (app.state.backup_scheduler). start() replaces
any running timer; stop() cancels it. Each firing calls the scheduled-backup endpoint with the
shared secret and records last_run/next_run on success. There is no retry: the next firing is
the retry.
"""
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal
from ..models.models import BackupSchedule


log = structlog.get_logger()

FREQUENCY_CRON = {
    "10min": "*/10 * * * *",
    "30min": "*/30 * * * *",
    "hourly": "0 * * * *",
    "daily": "0 0 * * *",
    "weekly": "0 0 * * 0",
}


def calculate_next_run(frequency: str, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    if frequency == "10min":
        return now + timedelta(minutes=10)
    if frequency == "30min":
        return now + timedelta(minutes=30)
    if frequency == "hourly":
        return now + timedelta(hours=1)
    if frequency == "daily":
        return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    if frequency == "weekly":
        return (now + timedelta(days=7)).replace(hour=0, minute=0, second=0, microsecond=0)
    return now + timedelta(hours=1)


class CronSchedule:
    """Five-field cron expression (minute hour day month weekday) with `*`, `*/n`, `a-b` and lists."""

    _RANGES = ((0, 59), (0, 23), (1, 31), (1, 12), (0, 6))

    def __init__(self, expression: str):
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"Invalid cron expression: {expression!r}")
        self.expression = expression
        self.minutes, self.hours, self.days, self.months, self.weekdays = (
            self._parse(field, lo, hi) for field, (lo, hi) in zip(fields, self._RANGES)
        )

    @staticmethod
    def _parse(field: str, lo: int, hi: int) -> frozenset:
        values = set()
        for part in field.split(","):
            step = 1
            if "/" in part:
                part, step_s = part.split("/", 1)
                step = int(step_s)
            if part == "*":
                start, end = lo, hi
            elif "-" in part:
                start_s, end_s = part.split("-", 1)
                start, end = int(start_s), int(end_s)
            else:
                start = end = int(part)
            if start < lo or end > hi or step < 1:
                raise ValueError(f"Cron field out of range: {field!r}")
            values.update(range(start, end + 1, step))
        return frozenset(values)

    def matches(self, moment: datetime) -> bool:
        cron_weekday = (moment.weekday() + 1) % 7  # cron: 0 = Sunday
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.day in self.days
            and moment.month in self.months
            and cron_weekday in self.weekdays
        )

    def next_after(self, moment: datetime) -> datetime:
        candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        # a year of minutes bounds every expression this parser accepts
        for _ in range(366 * 24 * 60):
            if self.matches(candidate):
                return candidate
            candidate += timedelta(minutes=1)
        raise ValueError(f"Cron expression never fires: {self.expression!r}")


def trigger_scheduled_backup() -> None:
    """POST to the scheduled-backup endpoint; raises on a non-2xx answer."""
    if not settings.admin_backup_secret:
        raise RuntimeError("ADMIN_BACKUP_SECRET is not configured")
    url = f"{settings.public_base_url.rstrip('/')}/api/admin/scheduled-backup"
    response = httpx.post(
        url,
        headers={"Authorization": f"Bearer {settings.admin_backup_secret}"},
        timeout=600.0,
    )
    response.raise_for_status()


def latest_schedule(db: Session) -> Optional[BackupSchedule]:
    return db.query(BackupSchedule).order_by(BackupSchedule.created_at.desc()).first()


class BackupScheduler:
    def __init__(
        self,
        trigger: Callable[[], None] = trigger_scheduled_backup,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._trigger = trigger
        self._session_factory = session_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self.frequency: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, frequency: str) -> None:
        if frequency not in FREQUENCY_CRON:
            raise ValueError(f"Unsupported backup frequency: {frequency}")
        cron = CronSchedule(FREQUENCY_CRON[frequency])
        with self._lock:
            self._stop_locked()
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(frequency, cron, stop_event), name="backup-scheduler", daemon=True
            )
            self._stop_event = stop_event
            self._thread = thread
            self.frequency = frequency
            thread.start()
        log.info("backup_scheduler_started", frequency=frequency, cron=cron.expression)

    def stop(self) -> None:
        with self._lock:
            was_running = self._stop_locked()
        if was_running:
            log.info("backup_scheduler_stopped")

    def _stop_locked(self) -> bool:
        thread, stop_event = self._thread, self._stop_event
        self._thread = None
        self._stop_event = None
        self.frequency = None
        if stop_event is None:
            return False
        stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        return True

    def _run(self, frequency: str, cron: CronSchedule, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            fire_at = cron.next_after(self._clock())
            delay = max((fire_at - self._clock()).total_seconds(), 0.0)
            if stop_event.wait(delay):
                break
            try:
                self.run_once(frequency)
            except Exception as e:
                # the timer outlives any single firing
                log.exception("scheduled_backup_firing_crashed", frequency=frequency, error=str(e))

    def run_once(self, frequency: str) -> bool:
        """
        Fire one scheduled backup. Returns True when the backup itself succeeded, even if
        recording last_run/next_run afterwards failed.
        """
        try:
            self._trigger()
        except Exception as e:
            log.error("scheduled_backup_failed", frequency=frequency, error=str(e))
            return False
        self._record_run(frequency)
        log.info("scheduled_backup_completed", frequency=frequency)
        return True

    def _record_run(self, frequency: str) -> None:
        db = None
        try:
            db = self._session_factory()
            schedule = latest_schedule(db)
            if schedule is not None:
                now = self._clock()
                schedule.last_run = now
                schedule.next_run = calculate_next_run(frequency, now)
                db.commit()
        except Exception as e:
            log.error("scheduled_backup_bookkeeping_failed", frequency=frequency, error=str(e))
            if db is not None:
                db.rollback()
        finally:
            if db is not None:
                db.close()

    def start_from_schedule(self) -> None:
        """Arm the timer from the persisted schedule, if one is enabled."""
        db = self._session_factory()
        try:
            schedule = latest_schedule(db)
            enabled = bool(schedule and schedule.enabled)
            frequency = schedule.frequency if schedule else None
        finally:
            db.close()
        if enabled and frequency in FREQUENCY_CRON:
            self.start(frequency)
