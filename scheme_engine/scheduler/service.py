"""Scheduler service for periodic sync cycles and reminder scans."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scheme_engine.logging import get_logger

logger = get_logger(__name__, component="scheduler")

SYNC_JOB_ID = "scheme-sync"
REMINDER_JOB_ID = "deadline-reminders"


class SchedulerService:
    """
    Wraps APScheduler to run the sync pipeline and the reminder scan.

    Uses BackgroundScheduler so jobs run in worker threads while the main
    thread handles signals and coordinates shutdown.
    """

    def __init__(
        self,
        sync_callable: Callable[[], object],
        sync_interval_seconds: int,
        reminder_callable: Optional[Callable[[], object]] = None,
        reminder_interval_seconds: Optional[int] = None,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            sync_callable: Called on each sync tick (e.g. pipeline.run_once)
            sync_interval_seconds: Interval between sync runs
            reminder_callable: Called on each reminder tick (optional)
            reminder_interval_seconds: Interval between reminder scans
            shutdown_event: Set on shutdown for coordination with the main thread
        """
        if reminder_callable is not None and not reminder_interval_seconds:
            raise ValueError("reminder_interval_seconds is required with reminder_callable")

        self.sync_callable = sync_callable
        self.sync_interval_seconds = sync_interval_seconds
        self.reminder_callable = reminder_callable
        self.reminder_interval_seconds = reminder_interval_seconds
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": sync_interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register the jobs and start the scheduler.

        The first sync runs immediately; reminders follow their own interval.
        """
        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.sync_callable,
            trigger=IntervalTrigger(seconds=self.sync_interval_seconds, timezone=timezone.utc),
            id=SYNC_JOB_ID,
            name="Scheme corpus sync",
            replace_existing=True,
            next_run_time=next_run,
        )

        if self.reminder_callable is not None:
            self.scheduler.add_job(
                func=self.reminder_callable,
                trigger=IntervalTrigger(seconds=self.reminder_interval_seconds, timezone=timezone.utc),
                id=REMINDER_JOB_ID,
                name="Deadline reminder scan",
                replace_existing=True,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with sync interval: {self.sync_interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "sync_interval_seconds": self.sync_interval_seconds,
                "reminder_interval_seconds": self.reminder_interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shut down the scheduler.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self) -> None:
        """Run the sync callable synchronously in the current thread."""
        logger.info("Triggering immediate sync run", extra={"event": "scheduler.trigger_now"})
        self.sync_callable()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str = SYNC_JOB_ID) -> Optional[datetime]:
        """Next scheduled run of a job, or None if not scheduled."""
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None
