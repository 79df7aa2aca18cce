"""Tests for the expiry sweeper and its recurring-task scheduling."""

from datetime import datetime, timedelta

import pytest

import models
from sweeper import (
    ExpirySweeper,
    RecurringTask,
    sweep_expired_files,
    sweep_expired_public_recordings,
)


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestFileSweep:
    def test_deletes_only_records_past_retention(self, db, make_user, make_file_record):
        user = make_user()
        old = make_file_record(user.id, age_hours=13)
        recent = make_file_record(user.id, age_hours=11)
        old_id, recent_id = old.id, recent.id

        assert sweep_expired_files(db) == 1

        remaining = [row.id for row in db.query(models.File.id)]
        assert remaining == [recent_id]
        assert old_id not in remaining

    def test_removes_staging_file_of_expired_record(self, db, make_user, make_file_record, tmp_path):
        user = make_user()
        staged = tmp_path / "1700000000000_take.webm"
        staged.write_bytes(b"audio")
        kept = tmp_path / "1700000000001_take.webm"
        kept.write_bytes(b"audio")
        make_file_record(user.id, age_hours=13, filepath=str(staged))
        make_file_record(user.id, age_hours=1, filepath=str(kept))

        sweep_expired_files(db)

        assert not staged.exists()
        assert kept.exists()

    def test_missing_or_absent_paths_are_ignored(self, db, make_user, make_file_record, tmp_path):
        user = make_user()
        make_file_record(user.id, age_hours=13, filepath=None)
        make_file_record(user.id, age_hours=13, filepath=str(tmp_path / "gone.webm"))

        assert sweep_expired_files(db) == 2
        assert db.query(models.File).count() == 0

    def test_nothing_to_delete(self, db):
        assert sweep_expired_files(db) == 0


def test_public_sweep_uses_retention_window(db, make_public_entry):
    make_public_entry("C", age_hours=13)
    make_public_entry("C", age_hours=11)

    assert sweep_expired_public_recordings(db) == 1
    assert db.query(models.PublicRecording).count() == 1


class TestRecurringTask:
    def test_interval_only_task_waits_for_first_interval(self):
        clock = FakeClock()
        runs = []
        task = RecurringTask("job", runs.append, timedelta(hours=12), clock=clock)
        task.start()

        assert task.tick() is False
        clock.advance(hours=11, minutes=59)
        assert task.tick() is False
        clock.advance(minutes=1)
        assert task.tick() is True
        assert runs == [clock.now]

    def test_run_on_start_task_runs_immediately(self):
        clock = FakeClock()
        runs = []
        task = RecurringTask("job", runs.append, timedelta(hours=12), run_on_start=True, clock=clock)
        task.start()

        assert task.tick() is True
        assert task.tick() is False
        clock.advance(hours=12)
        assert task.tick() is True
        assert len(runs) == 2

    def test_failure_is_logged_and_rescheduled(self):
        clock = FakeClock()
        calls = []

        def boom(now):
            calls.append(now)
            raise RuntimeError("db down")

        task = RecurringTask("job", boom, timedelta(minutes=5), run_on_start=True, clock=clock)

        assert task.tick() is True
        assert task.next_run == clock.now + timedelta(minutes=5)
        clock.advance(minutes=5)
        assert task.tick() is True
        assert len(calls) == 2


class TestExpirySweeper:
    @pytest.fixture
    def clock(self):
        return FakeClock(datetime.utcnow())

    def test_startup_runs_public_sweep_only(self, session_factory, db, clock, make_user,
                                            make_file_record, make_public_entry):
        user = make_user()
        make_file_record(user.id, age_hours=13)
        make_public_entry("C", age_hours=13)
        sweeper = ExpirySweeper(session_factory, clock=clock)

        sweeper.start()
        assert sweeper.tick() == ["public_sweep"]

        assert db.query(models.PublicRecording).count() == 0
        assert db.query(models.File).count() == 1

    def test_file_sweep_runs_after_interval(self, session_factory, db, clock, make_user, make_file_record):
        user = make_user()
        make_file_record(user.id, age_hours=1)
        sweeper = ExpirySweeper(session_factory, clock=clock)
        sweeper.start()
        sweeper.tick()

        clock.advance(hours=12)
        assert sweeper.tick() == ["file_sweep", "public_sweep"]
        assert db.query(models.File).count() == 0

    def test_sweep_failure_does_not_raise(self, clock):
        def broken_factory():
            raise RuntimeError("no database")

        sweeper = ExpirySweeper(broken_factory, clock=clock)
        sweeper.start()
        assert sweeper.tick() == ["public_sweep"]
