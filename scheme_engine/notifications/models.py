"""Data models and exceptions for the notification trigger."""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from scheme_engine.domain.records import NotificationReason


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


@dataclass(frozen=True)
class NotificationRequest:
    """Request handed to the external delivery collaborator.

    Attributes:
        user_id: Recipient
        scheme_id: Scheme the notification is about
        reason: Why the notification was produced
        corpus_version: Corpus version the decision was made on
        deadline: Scheme deadline, for reminders
    """

    user_id: str
    scheme_id: str
    reason: NotificationReason
    corpus_version: Optional[int] = None
    deadline: Optional[date] = None


@dataclass
class DeliveryResult:
    """Outcome reported by a NotificationSink.

    Attributes:
        request: The request that was handed over
        status: "sent", "duplicate" or "failed"
        error: Error message when delivery failed
    """

    request: NotificationRequest
    status: str  # "sent", "duplicate", "failed"
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status == "sent"


@dataclass
class TriggerReport:
    """
    Summary of one notification pass (event processing or reminder scan).

    Attributes:
        events_processed: Change events consumed from the channel
        profiles_evaluated: Profile/scheme pairs re-evaluated
        baselines_recorded: Ledger entries created without a prior result
        requests: Every request handed to the sink
        sent_count: Requests the sink accepted
        duplicate_count: Requests skipped because they were already sent
        failed_count: Requests the sink failed to accept
    """

    events_processed: int = 0
    profiles_evaluated: int = 0
    baselines_recorded: int = 0
    requests: List[NotificationRequest] = field(default_factory=list)
    sent_count: int = 0
    duplicate_count: int = 0
    failed_count: int = 0

    @property
    def had_errors(self) -> bool:
        return self.failed_count > 0
