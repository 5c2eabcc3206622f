"""Periodic scheduling of sync cycles and reminder scans."""

from .service import REMINDER_JOB_ID, SYNC_JOB_ID, SchedulerService

__all__ = ["SchedulerService", "SYNC_JOB_ID", "REMINDER_JOB_ID"]
