"""Database schema definition and ORM models.

Tables:
- schemes: current scheme records (JSON payload, content hash, last-written version)
- corpus_state: single-row corpus version counter
- change_log: append-only record of effective changes, keyed by (version, seq)
- sync_status: reconciliation health per authority
- sync_checkpoints: records confirmed during an unfinished reconciliation
- eligibility_state: last known eligibility per (user, scheme)
- interests: schemes a user asked to follow
- notifications_sent: emitted notifications, for de-duplication
- consumer_cursors: last change-log version each event consumer finished
"""

import json
from typing import Optional

from sqlalchemy import Boolean, Column, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from scheme_engine.domain.models import ChangeEvent, ChangeKind, Scheme
from scheme_engine.domain.records import NotificationReason, SentNotification, SyncStatus
from scheme_engine.logging import get_logger
from scheme_engine.utils.timestamps import format_timestamp, parse_timestamp

logger = get_logger(__name__, component="database")

Base = declarative_base()


class SchemeModel(Base):
    """ORM model for the schemes table."""

    __tablename__ = "schemes"

    scheme_id = Column(String(128), primary_key=True, nullable=False)
    category = Column(String(100), nullable=False)
    payload = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False)

    __table_args__ = (Index("idx_schemes_category", "category"),)

    def to_domain(self) -> Scheme:
        return Scheme.model_validate(json.loads(self.payload))

    @classmethod
    def from_domain(cls, scheme: Scheme, version: int) -> "SchemeModel":
        return cls(
            scheme_id=scheme.id,
            category=scheme.category,
            payload=dump_scheme(scheme),
            content_hash=scheme.content_hash,
            version=version,
        )


class CorpusStateModel(Base):
    """ORM model for the corpus_state table (a single row with id 1)."""

    __tablename__ = "corpus_state"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(String(50), nullable=True)


class ChangeLogModel(Base):
    """ORM model for the append-only change_log table."""

    __tablename__ = "change_log"

    version = Column(Integer, primary_key=True, nullable=False)
    seq = Column(Integer, primary_key=True, nullable=False)
    scheme_id = Column(String(128), nullable=False)
    kind = Column(String(20), nullable=False)
    previous_hash = Column(String(64), nullable=True)
    new_hash = Column(String(64), nullable=True)
    category = Column(String(100), nullable=True)
    recorded_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_change_log_scheme", "scheme_id"),)

    def to_domain(self) -> ChangeEvent:
        return ChangeEvent(
            scheme_id=self.scheme_id,
            kind=ChangeKind(self.kind),
            version=self.version,
            previous_hash=self.previous_hash,
            new_hash=self.new_hash,
            category=self.category,
        )

    @classmethod
    def from_domain(cls, event: ChangeEvent, seq: int, recorded_at: str) -> "ChangeLogModel":
        return cls(
            version=event.version,
            seq=seq,
            scheme_id=event.scheme_id,
            kind=event.kind.value,
            previous_hash=event.previous_hash,
            new_hash=event.new_hash,
            category=event.category,
            recorded_at=recorded_at,
        )


class SyncStatusModel(Base):
    """ORM model for the sync_status table."""

    __tablename__ = "sync_status"

    authority = Column(String(255), primary_key=True, nullable=False)
    corpus_version = Column(Integer, nullable=False, default=0)
    authority_version = Column(Integer, nullable=True)
    last_success_at = Column(String(50), nullable=True)
    last_error_at = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    is_stale = Column(Boolean, nullable=False, default=False)

    def to_domain(self) -> SyncStatus:
        return SyncStatus(
            authority=self.authority,
            corpus_version=self.corpus_version,
            authority_version=self.authority_version,
            last_success_at=parse_timestamp(self.last_success_at),
            last_error_at=parse_timestamp(self.last_error_at),
            error_message=self.error_message,
            is_stale=bool(self.is_stale),
        )

    @classmethod
    def from_domain(cls, status: SyncStatus) -> "SyncStatusModel":
        return cls(
            authority=status.authority,
            corpus_version=status.corpus_version,
            authority_version=status.authority_version,
            last_success_at=format_timestamp(status.last_success_at),
            last_error_at=format_timestamp(status.last_error_at),
            error_message=status.error_message,
            is_stale=status.is_stale,
        )


class SyncCheckpointModel(Base):
    """ORM model for the sync_checkpoints table.

    Rows are grouped by the fingerprint of the manifest work list they belong to.
    """

    __tablename__ = "sync_checkpoints"

    fingerprint = Column(String(64), primary_key=True, nullable=False)
    scheme_id = Column(String(128), primary_key=True, nullable=False)
    payload = Column(Text, nullable=False)
    recorded_at = Column(String(50), nullable=False)

    def to_domain(self) -> Scheme:
        return Scheme.model_validate(json.loads(self.payload))


class EligibilityStateModel(Base):
    """ORM model for the eligibility_state ledger."""

    __tablename__ = "eligibility_state"

    user_id = Column(String(128), primary_key=True, nullable=False)
    scheme_id = Column(String(128), primary_key=True, nullable=False)
    eligible = Column(Boolean, nullable=False)
    corpus_version = Column(Integer, nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_eligibility_scheme", "scheme_id"),)


class InterestModel(Base):
    """ORM model for the interests table."""

    __tablename__ = "interests"

    user_id = Column(String(128), primary_key=True, nullable=False)
    scheme_id = Column(String(128), primary_key=True, nullable=False)
    registered_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_interests_scheme", "scheme_id"),)


class SentNotificationModel(Base):
    """ORM model for the notifications_sent table."""

    __tablename__ = "notifications_sent"

    user_id = Column(String(128), primary_key=True, nullable=False)
    scheme_id = Column(String(128), primary_key=True, nullable=False)
    reason = Column(String(32), primary_key=True, nullable=False)
    dedupe_key = Column(String(96), primary_key=True, nullable=False)
    sent_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_notifications_sent_at", "sent_at"),)

    def to_domain(self) -> SentNotification:
        return SentNotification(
            user_id=self.user_id,
            scheme_id=self.scheme_id,
            reason=NotificationReason(self.reason),
            dedupe_key=self.dedupe_key,
            sent_at=parse_timestamp(self.sent_at),
        )

    @classmethod
    def from_domain(cls, record: SentNotification) -> "SentNotificationModel":
        return cls(
            user_id=record.user_id,
            scheme_id=record.scheme_id,
            reason=record.reason.value,
            dedupe_key=record.dedupe_key,
            sent_at=format_timestamp(record.sent_at),
        )


class ConsumerCursorModel(Base):
    """ORM model for the consumer_cursors table."""

    __tablename__ = "consumer_cursors"

    consumer = Column(String(64), primary_key=True, nullable=False)
    version = Column(Integer, nullable=False)
    updated_at = Column(String(50), nullable=False)


def dump_scheme(scheme: Scheme) -> str:
    """Serialize a scheme to the JSON text stored in payload columns."""
    return json.dumps(scheme.model_dump(mode="json"), sort_keys=True, ensure_ascii=False)


def create_schema(engine: Engine, drop_existing: Optional[bool] = False) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
        drop_existing: Drop every table first (tests and local resets only)
    """
    logger.info("Creating database schema if not exists")

    if drop_existing:
        Base.metadata.drop_all(engine)

    Base.metadata.create_all(engine, checkfirst=True)

    tables = inspect(engine).get_table_names()
    logger.info(f"Database schema ready. Tables: {', '.join(sorted(tables))}")
