"""Change-triggered re-evaluation and notification.

The trigger consumes corpus ChangeEvents in version order:
- added/updated: re-evaluates profiles against the changed scheme in bounded
  batches and compares each result with the eligibility ledger
- removed: tells interested users and drops the scheme's ledger rows

An event leaves the queue only once it has been handled, and the last fully
handled version is persisted so a restarted process can replay the rest from
the change log. A ledger row only moves to the new result once any notification
owed for the transition has been accepted by the sink.

A separate reminder scan notifies interested users of approaching deadlines.
Requests are handed to a NotificationSink; delivery is never performed here.
"""

import time
from collections import deque
from datetime import date, timedelta
from itertools import islice
from typing import Deque, Iterator, List, Optional

from scheme_engine.config.models import NotificationSettings
from scheme_engine.corpus import ChangeEventChannel, CorpusSnapshot, SchemeCorpus
from scheme_engine.domain.models import ChangeEvent, ChangeKind, Profile, Scheme
from scheme_engine.domain.records import NotificationReason
from scheme_engine.logging import get_logger, log_context
from scheme_engine.matching import MatchingEngine
from scheme_engine.persistence import (
    ChangeLogRepository,
    ConsumerCursorRepository,
    EligibilityRepository,
    InterestRepository,
    NotificationRepository,
    get_session,
)
from scheme_engine.utils.timestamps import utc_now, utc_today

from .collaborators import NotificationSink, ProfileSource
from .models import NotificationRequest, TriggerReport

logger = get_logger(__name__, component="notification")


class NotificationTrigger:
    """Turns corpus changes into notification requests.

    Requires init_database(): the eligibility ledger, interest flags and sent
    notifications live in the database.

    Args:
        corpus: Corpus whose current snapshot is evaluated
        channel: Change events to consume (from corpus.subscribe())
        matcher: Matching engine used for re-evaluation
        profiles: Source of user profiles
        sink: Delivery collaborator
        settings: Batch size, batch pause and reminder threshold
    """

    consumer_name = "notification-trigger"

    def __init__(
        self,
        corpus: SchemeCorpus,
        channel: ChangeEventChannel,
        matcher: MatchingEngine,
        profiles: ProfileSource,
        sink: NotificationSink,
        settings: Optional[NotificationSettings] = None,
    ):
        self.corpus = corpus
        self.channel = channel
        self.matcher = matcher
        self.profiles = profiles
        self.sink = sink
        self.settings = settings or NotificationSettings()
        self._backlog: Deque[ChangeEvent] = deque()
        self._in_flight: Optional[ChangeEvent] = None

    def replay_logged_events(self) -> int:
        """Queue change-log events this consumer never finished handling.

        Call once at startup, before the first sync. Reads the change log kept
        by SqlCorpusStore: events newer than the persisted cursor, up to the
        current corpus version, are handled ahead of the channel. Handling an
        event twice is harmless because the ledger and sent records absorb it.

        Returns:
            Number of events queued
        """
        current = self.corpus.version
        with get_session() as session:
            cursor = ConsumerCursorRepository(session).get(self.consumer_name)
            logged = ChangeLogRepository(session).get_since(cursor or 0)

        events = [event for event in logged if event.version <= current]
        self._backlog.extend(events)
        if events:
            logger.info(
                f"Replaying {len(events)} change events after version {cursor or 0}",
                extra={
                    "event": "notification.events.replayed",
                    "cursor": cursor,
                    "replayed": len(events),
                    "corpus_version": current,
                },
            )
        return len(events)

    def process_pending(
        self, max_events: Optional[int] = None, as_of: Optional[date] = None
    ) -> TriggerReport:
        """Consume pending change events in order.

        An event whose handling raises stays at the head of the queue and is
        retried by the next call; the exception propagates.

        Args:
            max_events: Stop after this many events (None drains the channel)
            as_of: Date used for deadline checks (defaults to today, UTC)

        Returns:
            TriggerReport for the pass
        """
        as_of = as_of or utc_today()
        report = TriggerReport()
        last_version: Optional[int] = None
        drained = False

        while max_events is None or report.events_processed < max_events:
            event = self._next_event()
            if event is None:
                drained = True
                break

            with log_context(scheme_id=event.scheme_id, corpus_version=event.version):
                if event.kind is ChangeKind.REMOVED:
                    self._handle_removed(event, report)
                else:
                    self._handle_changed(event, as_of, report)
            self._in_flight = None
            report.events_processed += 1
            last_version = event.version

        if last_version is not None:
            # Later events of the last version may still be queued
            self._save_cursor(last_version if drained else last_version - 1)

        if report.events_processed:
            logger.info(
                f"Processed {report.events_processed} change events: "
                f"{report.sent_count} notifications sent",
                extra={
                    "event": "notification.events.processed",
                    "events_processed": report.events_processed,
                    "profiles_evaluated": report.profiles_evaluated,
                    "baselines_recorded": report.baselines_recorded,
                    "sent": report.sent_count,
                    "duplicates": report.duplicate_count,
                    "failed": report.failed_count,
                },
            )
        return report

    def run_reminder_scan(self, as_of: Optional[date] = None) -> TriggerReport:
        """Remind interested users of deadlines within the reminder threshold.

        Each (user, scheme, deadline) is reminded at most once.
        """
        as_of = as_of or utc_today()
        horizon = as_of + timedelta(days=self.settings.reminder_threshold_days)
        snapshot = self.corpus.current_snapshot()
        report = TriggerReport()

        due = sorted(
            (
                scheme
                for scheme in snapshot
                if scheme.is_active and scheme.deadline is not None and as_of <= scheme.deadline <= horizon
            ),
            key=lambda scheme: (scheme.deadline, scheme.id),
        )

        with get_session() as session:
            interests = InterestRepository(session)
            sent = NotificationRepository(session)
            for scheme in due:
                for user_id in interests.users_for_scheme(scheme.id):
                    request = NotificationRequest(
                        user_id=user_id,
                        scheme_id=scheme.id,
                        reason=NotificationReason.DEADLINE_REMINDER,
                        corpus_version=snapshot.version,
                        deadline=scheme.deadline,
                    )
                    self._emit(request, scheme.deadline.isoformat(), sent, report)

        logger.info(
            f"Reminder scan: {len(due)} schemes due by {horizon.isoformat()}, "
            f"{report.sent_count} reminders sent",
            extra={
                "event": "notification.reminders.scanned",
                "due_schemes": len(due),
                "sent": report.sent_count,
                "duplicates": report.duplicate_count,
                "failed": report.failed_count,
            },
        )
        return report

    def register_interest(self, user_id: str, scheme_id: str) -> bool:
        """Flag a user's interest in a scheme.

        Returns:
            False when the interest was already registered

        Raises:
            ValueError: If the scheme is not in the current corpus
        """
        if scheme_id not in self.corpus.current_snapshot():
            raise ValueError(f"Unknown scheme: {scheme_id}")
        with get_session() as session:
            added = InterestRepository(session).add(user_id, scheme_id)
        logger.info(
            f"Interest registered: {user_id} -> {scheme_id}",
            extra={"event": "notification.interest.registered", "user_id": user_id, "scheme_id": scheme_id},
        )
        return added

    def withdraw_interest(self, user_id: str, scheme_id: str) -> bool:
        """Remove a user's interest flag. Returns False when there was none."""
        with get_session() as session:
            return InterestRepository(session).remove(user_id, scheme_id)

    def _handle_changed(self, event: ChangeEvent, as_of: date, report: TriggerReport) -> None:
        """Re-evaluate every profile against the changed scheme.

        Evaluation uses the current snapshot, not the one at ``event.version``:
        an event that is behind the corpus is judged against the newer content,
        and the ledger comparison still yields one notification per real flip.
        """
        snapshot = self.corpus.current_snapshot()
        scheme = snapshot.get(event.scheme_id)
        if scheme is None:
            # Removed by a later version; its own event handles it
            logger.debug(
                f"Scheme {event.scheme_id} no longer present; skipping re-evaluation",
                extra={"event": "notification.event.skipped"},
            )
            return

        for position, batch in enumerate(self._batches()):
            if position and self.settings.batch_pause_seconds:
                time.sleep(self.settings.batch_pause_seconds)

            with get_session() as session:
                ledger = EligibilityRepository(session)
                interests = InterestRepository(session)
                sent = NotificationRepository(session)
                for profile in batch:
                    self._reevaluate(
                        profile, scheme, snapshot, event, as_of, ledger, interests, sent, report
                    )

    def _reevaluate(
        self,
        profile: Profile,
        scheme: Scheme,
        snapshot: CorpusSnapshot,
        event: ChangeEvent,
        as_of: date,
        ledger: EligibilityRepository,
        interests: InterestRepository,
        sent: NotificationRepository,
        report: TriggerReport,
    ) -> None:
        user_id = profile.user_id
        eligible = self.matcher.evaluate_scheme(profile, snapshot, scheme.id, as_of) is not None
        prior = ledger.get(user_id, scheme.id)
        if prior is None and event.kind is ChangeKind.ADDED:
            prior = False

        report.profiles_evaluated += 1

        if prior is None:
            ledger.record(user_id, scheme.id, eligible, snapshot.version)
            report.baselines_recorded += 1
            return

        reason = None
        if eligible and not prior:
            reason = NotificationReason.NEW_ELIGIBILITY
        elif prior and not eligible and interests.is_interested(user_id, scheme.id):
            reason = NotificationReason.LOST_ELIGIBILITY

        settled = True
        if reason is not None:
            request = NotificationRequest(
                user_id=user_id,
                scheme_id=scheme.id,
                reason=reason,
                corpus_version=snapshot.version,
                deadline=scheme.deadline,
            )
            # One key per transition: a later flip back and forth notifies again
            settled = self._emit(request, f"{snapshot.version}:{scheme.content_hash}", sent, report)

        # An undelivered transition keeps the prior result so the next event owes it again
        ledger.record(user_id, scheme.id, eligible if settled else prior, snapshot.version)

    def _handle_removed(self, event: ChangeEvent, report: TriggerReport) -> None:
        with get_session() as session:
            sent = NotificationRepository(session)
            for user_id in InterestRepository(session).users_for_scheme(event.scheme_id):
                request = NotificationRequest(
                    user_id=user_id,
                    scheme_id=event.scheme_id,
                    reason=NotificationReason.SCHEME_REMOVED,
                    corpus_version=event.version,
                )
                self._emit(request, event.previous_hash or str(event.version), sent, report)

            dropped = EligibilityRepository(session).delete_for_scheme(event.scheme_id)

        logger.debug(
            f"Dropped {dropped} ledger rows for removed scheme {event.scheme_id}",
            extra={"event": "notification.ledger.dropped", "rows": dropped},
        )

    def _batches(self) -> Iterator[List[Profile]]:
        """Profiles with a user id, in chunks of batch_size."""
        profiles = (profile for profile in self.profiles.stream_profiles() if profile.user_id)
        while True:
            batch = list(islice(profiles, self.settings.batch_size))
            if not batch:
                return
            yield batch

    def _emit(
        self,
        request: NotificationRequest,
        dedupe_key: str,
        sent: NotificationRepository,
        report: TriggerReport,
    ) -> bool:
        """Send one request unless already sent.

        Returns:
            True when the request is delivered or was delivered before
        """
        if sent.has_been_sent(request.user_id, request.scheme_id, request.reason, dedupe_key):
            report.duplicate_count += 1
            logger.debug(
                f"Skipping duplicate {request.reason.value} for {request.user_id}",
                extra={"event": "notification.duplicate", "user_id": request.user_id},
            )
            return True

        report.requests.append(request)
        try:
            result = self.sink.send(request)
        except Exception as e:
            # Sink failures are counted per recipient
            report.failed_count += 1
            logger.error(
                f"Notification sink failed for {request.user_id}/{request.scheme_id}: {e}",
                extra={
                    "event": "notification.send.failure",
                    "user_id": request.user_id,
                    "reason": request.reason.value,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return False

        if not result.delivered:
            report.failed_count += 1
            logger.warning(
                f"Notification not delivered to {request.user_id}: {result.error}",
                extra={"event": "notification.send.failure", "user_id": request.user_id},
            )
            return False

        sent.record(request.user_id, request.scheme_id, request.reason, dedupe_key, utc_now())
        report.sent_count += 1
        return True

    def _next_event(self) -> Optional[ChangeEvent]:
        """The unfinished event if any, then the replay backlog, then the channel."""
        if self._in_flight is None:
            if self._backlog:
                self._in_flight = self._backlog.popleft()
            else:
                self._in_flight = self.channel.get()
        return self._in_flight

    def _save_cursor(self, version: int) -> None:
        with get_session() as session:
            ConsumerCursorRepository(session).set(self.consumer_name, version)
