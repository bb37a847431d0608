"""
Scheduler runner using APScheduler with Postgres advisory locks.

This module provides a singleton scheduler that runs background jobs
using APScheduler. Jobs are coordinated via Postgres advisory locks
and bookkept in the jobs table so a job never runs twice at once, even
with several application instances.

Usage:
    scheduler = get_scheduler()
    register_campaign_jobs(scheduler)
    scheduler.start()
"""
import functools
import hashlib
from typing import Optional, Callable
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR
from sqlalchemy import select, text
from sqlalchemy.engine import Connection

from src.lib import db as db_module
from src.lib.logging import get_logger
from src.models.jobs import Job, JobType, JobStatus

logger = get_logger(__name__)


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
    # Hash the job_id and take first 8 bytes as signed int64
    hash_bytes = hashlib.sha256(job_id.encode()).digest()[:8]
    lock_key = int.from_bytes(hash_bytes, byteorder='big', signed=False)
    # Convert to signed int64 range (Postgres bigint)
    if lock_key > 2**63 - 1:
        lock_key = lock_key - 2**64
    return abs(lock_key)


def try_acquire_lock(conn: Connection, lock_key: int) -> bool:
    """
    Try to acquire a session-level Postgres advisory lock.

    Args:
        conn: Connection that will hold the lock until released
        lock_key: Integer lock key

    Returns:
        True if lock acquired, False otherwise
    """
    result = conn.execute(
        text("SELECT pg_try_advisory_lock(:lock_key)"),
        {"lock_key": lock_key}
    )
    return bool(result.scalar())


def release_lock(conn: Connection, lock_key: int) -> None:
    """Release a Postgres advisory lock held by ``conn``."""
    conn.execute(
        text("SELECT pg_advisory_unlock(:lock_key)"),
        {"lock_key": lock_key}
    )


def _mark_job(lock_key: int, job_type: JobType, status: JobStatus, payload: Optional[dict] = None) -> None:
    with db_module.get_db_context() as db:
        job_record = db.execute(
            select(Job).where(Job.lock_key == lock_key)
        ).scalar_one_or_none()

        now = datetime.now(timezone.utc)
        if job_record is None:
            job_record = Job(
                type=job_type,
                scheduled_for=now,
                status=status,
                attempts=0,
                lock_key=lock_key,
            )
            db.add(job_record)

        job_record.status = status
        if status == JobStatus.PROCESSING:
            job_record.run_at = now
            job_record.attempts = (job_record.attempts or 0) + 1
        if payload is not None:
            job_record.payload = payload


def with_advisory_lock(job_id: str, job_type: JobType = JobType.OTHER):
    """
    Decorator to wrap an async job function with a Postgres advisory lock.

    The lock lives on a dedicated connection for the whole run; the job
    record is updated through short separate transactions. If the lock is
    held elsewhere the job is skipped and returns None.

    Args:
        job_id: Unique job identifier
        job_type: Job type enum value

    Example:
        @with_advisory_lock("campaign_tick", JobType.CAMPAIGN_TICK)
        async def run_campaign_tick():
            ...
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            lock_key = get_lock_key(job_id)

            with db_module.engine.connect() as lock_conn:
                if not try_acquire_lock(lock_conn, lock_key):
                    logger.info(f"Job {job_id} already running (lock {lock_key}), skipping")
                    return None

                logger.info(f"Job {job_id} acquired lock {lock_key}, executing")
                try:
                    _mark_job(lock_key, job_type, JobStatus.PROCESSING)
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        _mark_job(lock_key, job_type, JobStatus.FAILED, {"error": str(e)})
                        logger.error(f"Job {job_id} failed: {e}", exc_info=True)
                        raise

                    _mark_job(
                        lock_key,
                        job_type,
                        JobStatus.DONE,
                        result if isinstance(result, dict) else None,
                    )
                    logger.info(f"Job {job_id} completed successfully")
                    return result
                finally:
                    release_lock(lock_conn, lock_key)
                    logger.info(f"Job {job_id} released lock {lock_key}")

        return wrapper
    return decorator


class SchedulerManager:
    """
    Manager for APScheduler with lifecycle management.
    """

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone
        self.scheduler = BackgroundScheduler(
            timezone=timezone,
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
        logger.info(f"Job {event.job_id} executed successfully")

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

        Args:
            func: Job function
            job_id: Unique job identifier
            seconds: Interval in seconds
            minutes: Interval in minutes
            hours: Interval in hours
            **kwargs: Additional APScheduler job options
        """
        if not any([seconds, minutes, hours]):
            raise ValueError("At least one of seconds, minutes, or hours must be specified")

        trigger = IntervalTrigger(
            seconds=seconds or 0,
            minutes=minutes or 0,
            hours=hours or 0,
            timezone=self.timezone
        )

        self.scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)
        logger.info(
            f"Added interval job: {job_id} "
            f"(seconds={seconds}, minutes={minutes}, hours={hours})"
        )


def get_scheduler() -> SchedulerManager:
    """
    Get singleton scheduler instance.

    Returns:
        SchedulerManager instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = SchedulerManager()

    return _scheduler
