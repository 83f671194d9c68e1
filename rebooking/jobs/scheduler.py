"""
Scheduler runner using APScheduler with Postgres advisory locks.

This module provides a singleton scheduler that runs the rebooking sweeps
in the background. Runs are coordinated via Postgres advisory locks and
recorded in the jobs table, so several app replicas can share one
database without running the same sweep twice.

Usage:
    scheduler = get_scheduler()
    scheduler.add_cron_job(run_daily_suggestion_sweep, "daily_suggestion_sweep", hour=6, minute=0)
    scheduler.start()
"""
import functools
import hashlib
import logging
from typing import Optional, Callable
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR
from sqlalchemy import select, text
from sqlalchemy.engine import Connection

from rebooking.lib import db as db_module
from rebooking.models.jobs import Job, JobType, JobStatus

logger = logging.getLogger(__name__)


# Singleton scheduler instance
_scheduler: Optional["SchedulerManager"] = None


def get_lock_key(job_id: str) -> int:
    """
    Generate a consistent integer lock key from job ID for pg_advisory_lock.

    Args:
        job_id: Job identifier string

    Returns:
        Integer lock key (positive, within bigint range)
    """
    hash_bytes = hashlib.sha256(job_id.encode()).digest()[:8]
    lock_key = int.from_bytes(hash_bytes, byteorder='big', signed=False)
    # Convert to signed int64 range (Postgres bigint)
    if lock_key > 2**63 - 1:
        lock_key = lock_key - 2**64
    return abs(lock_key)


def _is_postgres(conn: Connection) -> bool:
    return conn.dialect.name == "postgresql"


def try_acquire_lock(conn: Connection, lock_key: int) -> bool:
    """
    Try to acquire a session-level advisory lock on this connection.

    Other databases have no cross-process lock; the in-process
    max_instances=1 job default is the only guard there.
    """
    if not _is_postgres(conn):
        return True
    result = conn.execute(
        text("SELECT pg_try_advisory_lock(:lock_key)"),
        {"lock_key": lock_key}
    )
    return bool(result.scalar())


def release_lock(conn: Connection, lock_key: int) -> None:
    if not _is_postgres(conn):
        return
    conn.execute(
        text("SELECT pg_advisory_unlock(:lock_key)"),
        {"lock_key": lock_key}
    )


def _record_job_start(job_type: JobType, lock_key: int) -> None:
    now = datetime.now(timezone.utc)
    with db_module.get_db_context() as db:
        job_record = db.execute(
            select(Job).where(Job.lock_key == lock_key)
        ).scalar_one_or_none()

        if job_record is None:
            job_record = Job(
                type=job_type,
                scheduled_for=now,
                run_at=now,
                status=JobStatus.PROCESSING,
                attempts=1,
                lock_key=lock_key,
            )
            db.add(job_record)
        else:
            job_record.status = JobStatus.PROCESSING
            job_record.run_at = now
            job_record.attempts += 1


def _record_job_end(lock_key: int, status: JobStatus, payload: Optional[dict] = None) -> None:
    with db_module.get_db_context() as db:
        job_record = db.execute(
            select(Job).where(Job.lock_key == lock_key)
        ).scalar_one_or_none()
        if job_record is not None:
            job_record.status = status
            job_record.payload = payload


def with_advisory_lock(job_id: str, job_type: JobType = JobType.OTHER):
    """
    Decorator to wrap a job function with a Postgres advisory lock.

    The lock is held on a dedicated connection for the whole run, so it is
    not lost when the job's own sessions commit. If another replica holds
    it, the run is skipped and the wrapper returns None.

    Example:
        @with_advisory_lock("daily_suggestion_sweep", JobType.SUGGESTION_SWEEP)
        def daily_suggestion_sweep():
            ...
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            lock_key = get_lock_key(job_id)

            with db_module.engine.connect() as lock_conn:
                acquired = try_acquire_lock(lock_conn, lock_key)
                lock_conn.commit()
                if not acquired:
                    logger.info(f"Job {job_id} already running (lock {lock_key}), skipping")
                    return None

                logger.info(f"Job {job_id} acquired lock {lock_key}, executing")
                try:
                    _record_job_start(job_type, lock_key)
                    try:
                        result = func(*args, **kwargs)
                    except Exception as e:
                        _record_job_end(lock_key, JobStatus.FAILED, {"error": str(e)})
                        logger.error(f"Job {job_id} failed: {e}", exc_info=True)
                        raise

                    _record_job_end(
                        lock_key,
                        JobStatus.DONE,
                        result if isinstance(result, dict) else None,
                    )
                    logger.info(f"Job {job_id} completed successfully")
                    return result
                finally:
                    release_lock(lock_conn, lock_key)
                    lock_conn.commit()
                    logger.info(f"Job {job_id} released lock {lock_key}")

        return wrapper
    return decorator


class SchedulerManager:
    """
    Manager for APScheduler with lifecycle management.
    """

    def __init__(self):
        self.scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance per job
                'misfire_grace_time': 300,  # 5 minutes grace period
            }
        )

        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

        logger.info("SchedulerManager initialized")

    def _on_job_executed(self, event):
        logger.info(f"Job {event.job_id} executed successfully (result: {event.retval})")

    def _on_job_error(self, event):
        logger.error(
            f"Job {event.job_id} raised {event.exception.__class__.__name__}: "
            f"{event.exception}",
            exc_info=event.exception
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start the scheduler."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")
        else:
            logger.warning("Scheduler already running")

    def shutdown(self, wait: bool = True) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to finish
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown")
        else:
            logger.warning("Scheduler not running")

    def add_cron_job(
        self,
        func: Callable,
        job_id: str,
        hour: Optional[int] = None,
        minute: Optional[int] = None,
        day_of_week: Optional[str] = None,
        **kwargs
    ) -> None:
        """
        Add a cron-scheduled job.

        Args:
            func: Job function (should be decorated with @with_advisory_lock)
            job_id: Unique job identifier
            hour: Hour to run (0-23)
            minute: Minute to run (0-59)
            day_of_week: Day of week (mon,tue,wed,thu,fri,sat,sun)
        """
        trigger = CronTrigger(
            hour=hour,
            minute=minute,
            day_of_week=day_of_week,
            timezone="UTC"
        )
        self.scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)
        logger.info(f"Added cron job: {job_id} (hour={hour}, minute={minute})")

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        seconds: Optional[int] = None,
        minutes: Optional[int] = None,
        hours: Optional[int] = None,
        **kwargs
    ) -> None:
        """
        Add an interval-scheduled job.

        Raises:
            ValueError: no interval given
        """
        if not any([seconds, minutes, hours]):
            raise ValueError("At least one of seconds, minutes, or hours must be specified")

        trigger = IntervalTrigger(
            seconds=seconds or 0,
            minutes=minutes or 0,
            hours=hours or 0,
            timezone="UTC"
        )
        self.scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)
        logger.info(f"Added interval job: {job_id} (seconds={seconds}, minutes={minutes}, hours={hours})")

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)
        logger.info(f"Removed job: {job_id}")

    def get_jobs(self) -> list:
        return self.scheduler.get_jobs()


def get_scheduler() -> SchedulerManager:
    """Get singleton scheduler instance."""
    global _scheduler

    if _scheduler is None:
        _scheduler = SchedulerManager()

    return _scheduler
