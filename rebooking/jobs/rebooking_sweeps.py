"""
Rebooking Sweeps - scheduled suggestion generation and expiry.

Two jobs share the scheduler:
- daily suggestion sweep: creates suggestions for customers who are due
- hourly expiry sweep: retires pending/shown suggestions past their expiry

Each run gets its own correlation id and database session, and is wrapped
with @with_advisory_lock so only one replica runs it at a time.
"""
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from uuid import uuid4

from rebooking.lib import db as db_module
from rebooking.lib.clock import Clock
from rebooking.lib.logging import get_logger, set_correlation_id
from rebooking.lib.settings import settings
from rebooking.models.jobs import JobType
from rebooking.jobs.scheduler import with_advisory_lock
from rebooking.services.expiry_reaper import ExpiryReaper
from rebooking.services.suggestion_generator import SuggestionGenerator

logger = get_logger(__name__)

DAILY_SWEEP_JOB_ID = "rebook_daily_suggestion_sweep"
EXPIRY_SWEEP_JOB_ID = "rebook_hourly_expiry_sweep"


def run_daily_suggestion_sweep(clock: Optional[Clock] = None) -> Dict[str, Any]:
    """
    Run one suggestion sweep in a fresh session.

    Returns:
        {"correlation_id", "started_at", "duration_seconds", "generated"}
    """
    correlation_id = str(uuid4())
    set_correlation_id(correlation_id)
    started_at = datetime.now(timezone.utc)
    logger.info(f"Starting daily suggestion sweep (correlation_id: {correlation_id})")

    with db_module.get_db_context() as db:
        generated = SuggestionGenerator(db, clock=clock).run_daily_suggestion_sweep()

    duration = (datetime.now(timezone.utc) - started_at).total_seconds()
    logger.info(
        f"Daily suggestion sweep completed "
        f"(correlation_id: {correlation_id}, duration: {duration:.2f}s, generated: {generated})"
    )
    return {
        "correlation_id": correlation_id,
        "started_at": started_at.isoformat(),
        "duration_seconds": duration,
        "generated": generated,
    }


def run_hourly_expiry_sweep(clock: Optional[Clock] = None) -> Dict[str, Any]:
    """Run one expiry sweep in a fresh session."""
    correlation_id = str(uuid4())
    set_correlation_id(correlation_id)
    started_at = datetime.now(timezone.utc)

    with db_module.get_db_context() as db:
        expired = ExpiryReaper(db, clock=clock).run_hourly_expiry_sweep()

    duration = (datetime.now(timezone.utc) - started_at).total_seconds()
    logger.info(
        f"Expiry sweep completed "
        f"(correlation_id: {correlation_id}, duration: {duration:.2f}s, expired: {expired})"
    )
    return {
        "correlation_id": correlation_id,
        "started_at": started_at.isoformat(),
        "duration_seconds": duration,
        "expired": expired,
    }


@with_advisory_lock(DAILY_SWEEP_JOB_ID, JobType.SUGGESTION_SWEEP)
def daily_suggestion_sweep_job() -> Dict[str, Any]:
    return run_daily_suggestion_sweep()


@with_advisory_lock(EXPIRY_SWEEP_JOB_ID, JobType.EXPIRY_SWEEP)
def hourly_expiry_sweep_job() -> Dict[str, Any]:
    return run_hourly_expiry_sweep()


def register_rebooking_jobs(scheduler_manager) -> None:
    """
    Register the rebooking sweeps with the scheduler.

    Example:
        from rebooking.jobs.scheduler import get_scheduler
        from rebooking.jobs.rebooking_sweeps import register_rebooking_jobs

        scheduler = get_scheduler()
        register_rebooking_jobs(scheduler)
        scheduler.start()
    """
    logger.info("Registering rebooking sweep jobs")

    scheduler_manager.add_cron_job(
        func=daily_suggestion_sweep_job,
        job_id=DAILY_SWEEP_JOB_ID,
        hour=settings.daily_sweep_hour,
        minute=settings.daily_sweep_minute,
    )
    scheduler_manager.add_interval_job(
        func=hourly_expiry_sweep_job,
        job_id=EXPIRY_SWEEP_JOB_ID,
        minutes=settings.expiry_sweep_interval_minutes,
    )

    logger.info("Rebooking sweep jobs registered")
