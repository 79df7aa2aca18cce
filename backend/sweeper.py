"""过期记录清理

Files and public recordings are kept for a fixed retention window. The file
sweep only runs on its interval; the public-recording sweep also runs once at
startup and before every fetch by share code.
"""
import asyncio
import os
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy.orm import Session

import crud

logger = structlog.get_logger()

RETENTION = timedelta(hours=12)


def utcnow() -> datetime:
    return datetime.utcnow()


def sweep_expired_files(db: Session, now: Optional[datetime] = None,
                        retention: timedelta = RETENTION) -> int:
    now = now or utcnow()
    paths = crud.delete_files_created_before(db, now - retention)

    for path in paths:
        if not path or not os.path.exists(path):
            continue
        try:
            os.remove(path)
        except OSError as e:
            logger.warning("staged_file_delete_failed", path=path, error=str(e))

    if paths:
        logger.info("expired_files_deleted", count=len(paths))
    return len(paths)


def sweep_expired_public_recordings(db: Session, now: Optional[datetime] = None,
                                    retention: timedelta = RETENTION) -> int:
    now = now or utcnow()
    deleted = crud.delete_public_recordings_created_before(db, now - retention)
    if deleted:
        logger.info("expired_public_recordings_deleted", count=deleted)
    return deleted


class RecurringTask:
    """A job that runs every ``interval``, driven by an injectable clock.

    ``tick()`` runs the job when it is due and reschedules it. Errors are
    logged and the job simply waits for its next slot.
    """

    def __init__(self, name: str, job: Callable[[datetime], object], interval: timedelta,
                 run_on_start: bool = False, clock: Callable[[], datetime] = utcnow):
        self.name = name
        self.job = job
        self.interval = interval
        self.run_on_start = run_on_start
        self.clock = clock
        self.next_run: Optional[datetime] = None

    def start(self):
        now = self.clock()
        self.next_run = now if self.run_on_start else now + self.interval

    def tick(self) -> bool:
        if self.next_run is None:
            self.start()
        now = self.clock()
        if now < self.next_run:
            return False

        try:
            self.job(now)
        except Exception as e:
            logger.error("scheduled_task_failed", task=self.name, error=str(e))
        self.next_run = now + self.interval
        return True


class ExpirySweeper:
    def __init__(self, session_factory, retention: timedelta = RETENTION,
                 file_interval: timedelta = RETENTION, public_interval: timedelta = RETENTION,
                 poll_seconds: float = 60, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.retention = retention
        self.poll_seconds = poll_seconds
        self.tasks = [
            RecurringTask("file_sweep", self.sweep_files, file_interval, clock=clock),
            RecurringTask("public_sweep", self.sweep_public, public_interval,
                          run_on_start=True, clock=clock),
        ]

    def sweep_files(self, now: datetime) -> int:
        db = self.session_factory()
        try:
            return sweep_expired_files(db, now, self.retention)
        finally:
            db.close()

    def sweep_public(self, now: datetime) -> int:
        db = self.session_factory()
        try:
            return sweep_expired_public_recordings(db, now, self.retention)
        finally:
            db.close()

    def start(self):
        for task in self.tasks:
            task.start()

    def tick(self):
        return [task.name for task in self.tasks if task.tick()]

    async def run_forever(self):
        self.start()
        logger.info("expiry_sweeper_started", poll_seconds=self.poll_seconds)
        loop = asyncio.get_running_loop()
        while True:
            await loop.run_in_executor(None, self.tick)
            await asyncio.sleep(self.poll_seconds)
