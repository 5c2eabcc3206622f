"""Data access layer (repositories) for persistence operations.

Repositories wrap one session, translate SQLAlchemy failures into
PersistenceError and return domain models rather than ORM rows.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from scheme_engine.domain.models import ChangeEvent, Scheme
from scheme_engine.domain.records import NotificationReason, SentNotification, SyncStatus
from scheme_engine.logging import get_logger
from scheme_engine.utils.timestamps import format_timestamp, utc_now

from .exceptions import DataIntegrityError, PersistenceError
from .schema import (
    ChangeLogModel,
    ConsumerCursorModel,
    CorpusStateModel,
    EligibilityStateModel,
    InterestModel,
    SchemeModel,
    SentNotificationModel,
    SyncCheckpointModel,
    SyncStatusModel,
    dump_scheme,
)

logger = get_logger(__name__, component="database")

_CORPUS_STATE_ID = 1


class SchemeRepository:
    """Repository for current scheme records."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, scheme_id: str) -> Optional[Scheme]:
        """Retrieve a scheme by id, or None if absent.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(SchemeModel, scheme_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving scheme {scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve scheme: {e}") from e

    def get_all(self) -> List[Scheme]:
        """Retrieve every stored scheme ordered by id."""
        try:
            stmt = select(SchemeModel).order_by(SchemeModel.scheme_id)
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving schemes: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve schemes: {e}") from e

    def upsert(self, scheme: Scheme, version: int) -> None:
        """Insert or replace a scheme, tagging it with the version that wrote it.

        Raises:
            DataIntegrityError: On constraint violation
            PersistenceError: If database error occurs
        """
        try:
            existing = self.session.get(SchemeModel, scheme.id)
            if existing:
                existing.category = scheme.category
                existing.payload = dump_scheme(scheme)
                existing.content_hash = scheme.content_hash
                existing.version = version
            else:
                self.session.add(SchemeModel.from_domain(scheme, version))
            self.session.flush()
        except IntegrityError as e:
            logger.error(f"Integrity error upserting scheme {scheme.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to upsert scheme: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting scheme {scheme.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert scheme: {e}") from e

    def delete(self, scheme_id: str) -> bool:
        """Delete a scheme. Returns True if a row was removed."""
        try:
            result = self.session.execute(
                delete(SchemeModel).where(SchemeModel.scheme_id == scheme_id)
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting scheme {scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete scheme: {e}") from e


class CorpusStateRepository:
    """Repository for the corpus version counter."""

    def __init__(self, session: Session):
        self.session = session

    def get_version(self) -> int:
        """Return the stored corpus version (0 when never written)."""
        try:
            model = self.session.get(CorpusStateModel, _CORPUS_STATE_ID)
            return model.version if model else 0
        except SQLAlchemyError as e:
            logger.error(f"Error reading corpus version: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read corpus version: {e}") from e

    def compare_and_set(self, expected: int, new: int) -> bool:
        """Advance the counter from ``expected`` to ``new``.

        Returns:
            False when the stored version is not ``expected`` (another writer won)
        """
        try:
            now = format_timestamp(utc_now())
            if self.session.get(CorpusStateModel, _CORPUS_STATE_ID) is None:
                if expected != 0:
                    return False
                self.session.add(CorpusStateModel(id=_CORPUS_STATE_ID, version=new, updated_at=now))
                self.session.flush()
                return True

            result = self.session.execute(
                update(CorpusStateModel)
                .where(
                    CorpusStateModel.id == _CORPUS_STATE_ID,
                    CorpusStateModel.version == expected,
                )
                .values(version=new, updated_at=now)
            )
            self.session.flush()
            return result.rowcount == 1
        except IntegrityError:
            # Concurrent first write
            return False
        except SQLAlchemyError as e:
            logger.error(f"Error advancing corpus version: {e}", exc_info=True)
            raise PersistenceError(f"Failed to advance corpus version: {e}") from e


class ChangeLogRepository:
    """Repository for the append-only change log."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, events: Iterable[ChangeEvent]) -> None:
        """Append events; ``seq`` is their position within the version."""
        try:
            recorded_at = format_timestamp(utc_now())
            for seq, event in enumerate(events):
                self.session.add(ChangeLogModel.from_domain(event, seq, recorded_at))
            self.session.flush()
        except IntegrityError as e:
            logger.error(f"Integrity error appending change log: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to append change log: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error appending change log: {e}", exc_info=True)
            raise PersistenceError(f"Failed to append change log: {e}") from e

    def get_since(self, version: int) -> List[ChangeEvent]:
        """Events with a version greater than ``version``, in (version, seq) order."""
        try:
            stmt = (
                select(ChangeLogModel)
                .where(ChangeLogModel.version > version)
                .order_by(ChangeLogModel.version, ChangeLogModel.seq)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error reading change log since {version}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read change log: {e}") from e


class SyncStatusRepository:
    """Repository for reconciliation health per authority."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, authority: str) -> Optional[SyncStatus]:
        try:
            model = self.session.get(SyncStatusModel, authority)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving sync status for {authority}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve sync status: {e}") from e

    def record_success(
        self,
        authority: str,
        timestamp: datetime,
        corpus_version: int,
        authority_version: Optional[int] = None,
    ) -> None:
        """Record a completed cycle. Clears the error and the stale flag."""
        try:
            model = self._get_or_create(authority)
            model.corpus_version = corpus_version
            if authority_version is not None:
                model.authority_version = authority_version
            model.last_success_at = format_timestamp(timestamp)
            model.last_error_at = None
            model.error_message = None
            model.is_stale = False
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error recording sync success for {authority}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record sync success: {e}") from e

    def record_error(
        self, authority: str, timestamp: datetime, error_message: str, stale: bool = True
    ) -> None:
        """Record a failed cycle. Keeps last_success_at unchanged."""
        try:
            model = self._get_or_create(authority)
            model.last_error_at = format_timestamp(timestamp)
            model.error_message = error_message
            model.is_stale = stale
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error recording sync error for {authority}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record sync error: {e}") from e

    def _get_or_create(self, authority: str) -> SyncStatusModel:
        model = self.session.get(SyncStatusModel, authority)
        if model is None:
            model = SyncStatusModel.from_domain(SyncStatus(authority=authority))
            self.session.add(model)
        return model


class CheckpointRepository:
    """Repository for records confirmed during an unfinished reconciliation."""

    def __init__(self, session: Session):
        self.session = session

    def load(self, fingerprint: str) -> Dict[str, Scheme]:
        """Confirmed records for a manifest fingerprint, keyed by scheme id."""
        try:
            stmt = select(SyncCheckpointModel).where(
                SyncCheckpointModel.fingerprint == fingerprint
            )
            return {
                model.scheme_id: model.to_domain()
                for model in self.session.execute(stmt).scalars()
            }
        except SQLAlchemyError as e:
            logger.error(f"Error loading checkpoint {fingerprint}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to load checkpoint: {e}") from e

    def save(self, fingerprint: str, scheme: Scheme) -> None:
        try:
            key = {"fingerprint": fingerprint, "scheme_id": scheme.id}
            existing = self.session.get(SyncCheckpointModel, key)
            now = format_timestamp(utc_now())
            if existing:
                existing.payload = dump_scheme(scheme)
                existing.recorded_at = now
            else:
                self.session.add(
                    SyncCheckpointModel(
                        fingerprint=fingerprint,
                        scheme_id=scheme.id,
                        payload=dump_scheme(scheme),
                        recorded_at=now,
                    )
                )
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error saving checkpoint for {scheme.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save checkpoint: {e}") from e

    def clear(self, fingerprint: Optional[str] = None) -> int:
        """Delete one fingerprint's rows, or every row when fingerprint is None."""
        try:
            stmt = delete(SyncCheckpointModel)
            if fingerprint is not None:
                stmt = stmt.where(SyncCheckpointModel.fingerprint == fingerprint)
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error clearing checkpoint: {e}", exc_info=True)
            raise PersistenceError(f"Failed to clear checkpoint: {e}") from e


class EligibilityRepository:
    """Repository for the eligibility ledger (last known result per user and scheme)."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str, scheme_id: str) -> Optional[bool]:
        """Last recorded eligibility, or None when there is no baseline."""
        try:
            model = self.session.get(
                EligibilityStateModel, {"user_id": user_id, "scheme_id": scheme_id}
            )
            return bool(model.eligible) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading eligibility for {user_id}/{scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read eligibility: {e}") from e

    def record(self, user_id: str, scheme_id: str, eligible: bool, corpus_version: int) -> None:
        try:
            key = {"user_id": user_id, "scheme_id": scheme_id}
            model = self.session.get(EligibilityStateModel, key)
            now = format_timestamp(utc_now())
            if model:
                model.eligible = eligible
                model.corpus_version = corpus_version
                model.updated_at = now
            else:
                self.session.add(
                    EligibilityStateModel(
                        user_id=user_id,
                        scheme_id=scheme_id,
                        eligible=eligible,
                        corpus_version=corpus_version,
                        updated_at=now,
                    )
                )
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error recording eligibility for {user_id}/{scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record eligibility: {e}") from e

    def delete_for_scheme(self, scheme_id: str) -> int:
        """Drop every ledger row for a scheme. Returns the number removed."""
        try:
            result = self.session.execute(
                delete(EligibilityStateModel).where(EligibilityStateModel.scheme_id == scheme_id)
            )
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error deleting eligibility rows for {scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete eligibility rows: {e}") from e


class InterestRepository:
    """Repository for user interest flags."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, user_id: str, scheme_id: str) -> bool:
        """Flag interest. Returns False when already flagged (idempotent)."""
        try:
            key = {"user_id": user_id, "scheme_id": scheme_id}
            if self.session.get(InterestModel, key) is not None:
                return False
            self.session.add(
                InterestModel(
                    user_id=user_id,
                    scheme_id=scheme_id,
                    registered_at=format_timestamp(utc_now()),
                )
            )
            self.session.flush()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error adding interest {user_id}/{scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add interest: {e}") from e

    def remove(self, user_id: str, scheme_id: str) -> bool:
        try:
            result = self.session.execute(
                delete(InterestModel).where(
                    InterestModel.user_id == user_id, InterestModel.scheme_id == scheme_id
                )
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error removing interest {user_id}/{scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to remove interest: {e}") from e

    def is_interested(self, user_id: str, scheme_id: str) -> bool:
        try:
            key = {"user_id": user_id, "scheme_id": scheme_id}
            return self.session.get(InterestModel, key) is not None
        except SQLAlchemyError as e:
            logger.error(f"Error reading interest {user_id}/{scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read interest: {e}") from e

    def users_for_scheme(self, scheme_id: str) -> List[str]:
        """Users following a scheme, ordered by user id."""
        try:
            stmt = (
                select(InterestModel.user_id)
                .where(InterestModel.scheme_id == scheme_id)
                .order_by(InterestModel.user_id)
            )
            return list(self.session.execute(stmt).scalars())
        except SQLAlchemyError as e:
            logger.error(f"Error listing interests for {scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list interests: {e}") from e


class NotificationRepository:
    """Repository for sent-notification records."""

    def __init__(self, session: Session):
        self.session = session

    def has_been_sent(
        self, user_id: str, scheme_id: str, reason: NotificationReason, dedupe_key: str
    ) -> bool:
        try:
            key = {
                "user_id": user_id,
                "scheme_id": scheme_id,
                "reason": reason.value,
                "dedupe_key": dedupe_key,
            }
            return self.session.get(SentNotificationModel, key) is not None
        except SQLAlchemyError as e:
            logger.error(
                f"Error checking notification {reason.value} for {user_id}/{scheme_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to check notification status: {e}") from e

    def record(
        self,
        user_id: str,
        scheme_id: str,
        reason: NotificationReason,
        dedupe_key: str,
        sent_at: datetime,
    ) -> SentNotification:
        """Record a sent notification (idempotent on the full key)."""
        record = SentNotification(
            user_id=user_id,
            scheme_id=scheme_id,
            reason=reason,
            dedupe_key=dedupe_key,
            sent_at=sent_at,
        )
        try:
            key = {
                "user_id": user_id,
                "scheme_id": scheme_id,
                "reason": reason.value,
                "dedupe_key": dedupe_key,
            }
            existing = self.session.get(SentNotificationModel, key)
            if existing:
                return existing.to_domain()
            self.session.add(SentNotificationModel.from_domain(record))
            self.session.flush()
            return record
        except IntegrityError as e:
            logger.debug(f"Duplicate notification record for {user_id}/{scheme_id}: {e}")
            raise DataIntegrityError(f"Failed to record notification: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error recording notification for {user_id}/{scheme_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record notification: {e}") from e

    def get_for_user(self, user_id: str) -> List[SentNotification]:
        """Notifications sent to a user, newest first."""
        try:
            stmt = (
                select(SentNotificationModel)
                .where(SentNotificationModel.user_id == user_id)
                .order_by(SentNotificationModel.sent_at.desc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notifications for {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notifications: {e}") from e



class ConsumerCursorRepository:
    """Repository for change-log consumer positions."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, consumer: str) -> Optional[int]:
        """Last version the consumer fully handled, or None if it never ran."""
        try:
            model = self.session.get(ConsumerCursorModel, consumer)
            return model.version if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading cursor for {consumer}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read consumer cursor: {e}") from e

    def set(self, consumer: str, version: int) -> None:
        try:
            now = format_timestamp(utc_now())
            model = self.session.get(ConsumerCursorModel, consumer)
            if model is None:
                self.session.add(ConsumerCursorModel(consumer=consumer, version=version, updated_at=now))
            else:
                model.version = version
                model.updated_at = now
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error saving cursor for {consumer}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save consumer cursor: {e}") from e
