"""Pipeline orchestration: reconcile the corpus, then notify on its changes."""

import threading
from datetime import date
from typing import Optional
from uuid import uuid4

from scheme_engine.logging import get_logger, log_context
from scheme_engine.notifications import NotificationError, NotificationTrigger, TriggerReport
from scheme_engine.persistence import PersistenceError
from scheme_engine.sync import SyncEngine
from scheme_engine.utils.timestamps import utc_now

from .models import PipelineRunResult

logger = get_logger(__name__, component="pipeline")


class SyncPipeline:
    """
    Runs one sync cycle followed by change-event processing.

    Overlapping runs are skipped rather than queued. Setting ``cancel_event``
    stops an in-flight reconciliation at its next checkpoint.
    """

    def __init__(
        self,
        sync_engine: SyncEngine,
        trigger: NotificationTrigger,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.sync_engine = sync_engine
        self.trigger = trigger
        self.cancel_event = cancel_event or threading.Event()
        self._lock = threading.Lock()

    def run_once(self) -> PipelineRunResult:
        """
        Execute reconcile -> process pending change events.

        Returns:
            PipelineRunResult; failures are captured in the result
        """
        run_started_at = utc_now()
        run_id = uuid4().hex

        if not self._lock.acquire(blocking=False):
            with log_context(run_id=run_id):
                logger.warning(
                    "Pipeline run skipped: previous run still in progress",
                    extra={"event": "pipeline.run.skipped", "reason": "lock_held"},
                )
            return PipelineRunResult(
                run_id=run_id,
                run_started_at=run_started_at,
                run_finished_at=utc_now(),
                skipped=True,
            )

        try:
            with log_context(run_id=run_id):
                logger.info("Pipeline run started", extra={"event": "pipeline.run.started"})

                sync_result = self.sync_engine.reconcile(self.cancel_event)
                trigger_report = None
                error_message = None

                try:
                    trigger_report = self.trigger.process_pending()
                except (PersistenceError, NotificationError) as e:
                    error_message = f"Change-event processing failed: {e}"
                    logger.error(
                        error_message,
                        extra={"event": "pipeline.notify.failed", "error_type": type(e).__name__},
                        exc_info=True,
                    )

                result = PipelineRunResult(
                    run_id=run_id,
                    run_started_at=run_started_at,
                    run_finished_at=utc_now(),
                    sync_result=sync_result,
                    trigger_report=trigger_report,
                    error_message=error_message,
                )

                logger.info(
                    "Pipeline run completed",
                    extra={
                        "event": "pipeline.run.completed",
                        "duration_ms": int(result.total_duration_seconds * 1000),
                        "sync_outcome": sync_result.outcome.value,
                        "corpus_version": sync_result.corpus_version,
                        "change_events": len(sync_result.events),
                        "notifications_sent": result.notifications_sent,
                        "had_errors": result.had_errors,
                    },
                )
                return result
        finally:
            self._lock.release()

    def run_reminders(self, as_of: Optional[date] = None) -> TriggerReport:
        """Run the deadline-reminder scan with its own run id."""
        with log_context(run_id=uuid4().hex):
            return self.trigger.run_reminder_scan(as_of)
