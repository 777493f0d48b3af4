"""
Backup scheduler: cron matching, next-run arithmetic and the timer lifecycle.
"""
import threading
from datetime import datetime, timedelta

import pytest

from app.db import SessionLocal
from app.models.models import BackupSchedule
from app.services.scheduler import FREQUENCY_CRON, BackupScheduler, CronSchedule, calculate_next_run


NOW = datetime(2024, 1, 3, 10, 3, 27)  # a Wednesday


class TestCronSchedule:
    @pytest.mark.parametrize(
        "frequency,expected",
        [
            ("10min", datetime(2024, 1, 3, 10, 10)),
            ("30min", datetime(2024, 1, 3, 10, 30)),
            ("hourly", datetime(2024, 1, 3, 11, 0)),
            ("daily", datetime(2024, 1, 4, 0, 0)),
            ("weekly", datetime(2024, 1, 7, 0, 0)),
        ],
    )
    def test_next_after(self, frequency, expected):
        assert CronSchedule(FREQUENCY_CRON[frequency]).next_after(NOW) == expected

    def test_next_after_is_strictly_later(self):
        on_the_hour = datetime(2024, 1, 3, 11, 0)
        assert CronSchedule("0 * * * *").next_after(on_the_hour) == datetime(2024, 1, 3, 12, 0)

    def test_ranges_and_lists(self):
        cron = CronSchedule("15,45 9-17 * * 1-5")
        assert cron.matches(datetime(2024, 1, 3, 9, 45))
        assert not cron.matches(datetime(2024, 1, 3, 18, 15))
        assert not cron.matches(datetime(2024, 1, 6, 9, 15))  # Saturday

    @pytest.mark.parametrize("expression", ["* * * *", "61 * * * *", "*/0 * * * *"])
    def test_invalid_expression(self, expression):
        with pytest.raises(ValueError):
            CronSchedule(expression)


class TestCalculateNextRun:
    @pytest.mark.parametrize(
        "frequency,expected",
        [
            ("10min", NOW + timedelta(minutes=10)),
            ("30min", NOW + timedelta(minutes=30)),
            ("hourly", NOW + timedelta(hours=1)),
            ("daily", datetime(2024, 1, 4)),
            ("weekly", datetime(2024, 1, 10)),
            ("fortnightly", NOW + timedelta(hours=1)),
        ],
    )
    def test_frequencies(self, frequency, expected):
        assert calculate_next_run(frequency, NOW) == expected


@pytest.fixture
def schedule_row(db_session):
    row = BackupSchedule(enabled=True, frequency="hourly")
    db_session.add(row)
    db_session.commit()
    return row


class TestBackupScheduler:
    def test_run_once_records_success(self, db_session, schedule_row):
        calls = []
        scheduler = BackupScheduler(trigger=lambda: calls.append(1), session_factory=SessionLocal, clock=lambda: NOW)

        assert scheduler.run_once("hourly") is True
        assert calls == [1]
        db_session.expire_all()
        row = db_session.get(BackupSchedule, schedule_row.id)
        assert row.last_run == NOW
        assert row.next_run == NOW + timedelta(hours=1)

    def test_failed_trigger_leaves_schedule_alone(self, db_session, schedule_row):
        def boom():
            raise RuntimeError("endpoint down")

        scheduler = BackupScheduler(trigger=boom, session_factory=SessionLocal, clock=lambda: NOW)
        assert scheduler.run_once("hourly") is False
        db_session.expire_all()
        assert db_session.get(BackupSchedule, schedule_row.id).last_run is None

    def test_start_replaces_and_stop_cancels(self):
        scheduler = BackupScheduler(trigger=lambda: None, session_factory=SessionLocal)
        scheduler.start("10min")
        first = scheduler._thread
        scheduler.start("daily")
        try:
            assert scheduler.is_running
            assert scheduler.frequency == "daily"
            assert not first.is_alive()
        finally:
            scheduler.stop()
        assert not scheduler.is_running
        assert scheduler.frequency is None

    def test_stop_without_start(self):
        scheduler = BackupScheduler(trigger=lambda: None, session_factory=SessionLocal)
        scheduler.stop()
        assert not scheduler.is_running

    def test_unknown_frequency(self):
        scheduler = BackupScheduler(trigger=lambda: None, session_factory=SessionLocal)
        with pytest.raises(ValueError):
            scheduler.start("yearly")
        assert not scheduler.is_running

    def test_start_from_schedule(self, schedule_row):
        scheduler = BackupScheduler(trigger=lambda: None, session_factory=SessionLocal)
        scheduler.start_from_schedule()
        try:
            assert scheduler.frequency == "hourly"
        finally:
            scheduler.stop()

    def test_start_from_disabled_schedule(self, db_session):
        db_session.add(BackupSchedule(enabled=False, frequency="daily"))
        db_session.commit()
        scheduler = BackupScheduler(trigger=lambda: None, session_factory=SessionLocal)
        scheduler.start_from_schedule()
        assert not scheduler.is_running

    def test_bookkeeping_failure_is_contained(self):
        def locked_database():
            raise RuntimeError("database is locked")

        scheduler = BackupScheduler(trigger=lambda: None, session_factory=locked_database, clock=lambda: NOW)
        assert scheduler.run_once("hourly") is True

    def test_commit_failure_rolls_back(self, db_session, schedule_row):
        class FailingCommit:
            def __init__(self):
                self.inner = SessionLocal()
                self.rolled_back = False

            def query(self, *args):
                return self.inner.query(*args)

            def commit(self):
                raise RuntimeError("disk I/O error")

            def rollback(self):
                self.rolled_back = True
                self.inner.rollback()

            def close(self):
                self.inner.close()

        sessions = []

        def factory():
            sessions.append(FailingCommit())
            return sessions[-1]

        scheduler = BackupScheduler(trigger=lambda: None, session_factory=factory, clock=lambda: NOW)
        assert scheduler.run_once("hourly") is True
        assert sessions[0].rolled_back
        db_session.expire_all()
        assert db_session.get(BackupSchedule, schedule_row.id).last_run is None

    def test_timer_survives_a_crashing_firing(self, monkeypatch):
        fired = threading.Event()
        calls = []

        def crash(frequency):
            calls.append(frequency)
            if len(calls) >= 2:
                fired.set()
            raise RuntimeError("unexpected")

        scheduler = BackupScheduler(trigger=lambda: None, session_factory=SessionLocal)
        monkeypatch.setattr(scheduler, "run_once", crash)
        monkeypatch.setattr(CronSchedule, "next_after", lambda self, moment: moment)
        scheduler.start("10min")
        try:
            assert fired.wait(5)
            assert scheduler.is_running
        finally:
            scheduler.stop()
