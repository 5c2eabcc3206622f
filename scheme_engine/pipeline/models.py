"""Data models for pipeline execution tracking and reporting."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from scheme_engine.notifications.models import TriggerReport
from scheme_engine.sync.models import SyncResult


@dataclass
class PipelineRunResult:
    """
    Aggregate results of one sync-then-notify run.

    Attributes:
        run_id: Identifier attached to every log record of the run
        run_started_at: UTC timestamp when the run began
        run_finished_at: UTC timestamp when the run completed
        sync_result: Outcome of the reconciliation (None when skipped)
        trigger_report: Outcome of change-event processing (None when skipped or failed)
        error_message: Unexpected error that stopped the run
        skipped: Whether the run was skipped because another run held the lock
        total_duration_seconds: Total time for the run
    """

    run_id: str
    run_started_at: datetime
    run_finished_at: datetime
    sync_result: Optional[SyncResult] = None
    trigger_report: Optional[TriggerReport] = None
    error_message: Optional[str] = None
    skipped: bool = False
    total_duration_seconds: float = 0.0

    def __post_init__(self):
        if self.total_duration_seconds == 0.0:
            delta = self.run_finished_at - self.run_started_at
            self.total_duration_seconds = delta.total_seconds()

    @property
    def had_errors(self) -> bool:
        return bool(
            self.error_message
            or (self.sync_result is not None and self.sync_result.had_errors)
            or (self.trigger_report is not None and self.trigger_report.had_errors)
        )

    @property
    def notifications_sent(self) -> int:
        return self.trigger_report.sent_count if self.trigger_report else 0
