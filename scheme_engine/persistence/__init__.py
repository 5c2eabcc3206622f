"""Persistence layer for the scheme corpus and its bookkeeping tables.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - SchemeRepository, CorpusStateRepository, ChangeLogRepository: the corpus
    - SyncStatusRepository, CheckpointRepository: reconciliation bookkeeping
    - EligibilityRepository, InterestRepository, NotificationRepository:
      notification ledger, interest flags and de-duplication
    - ConsumerCursorRepository: how far each change-log consumer got

Example usage:
    >>> from scheme_engine.persistence import init_database, get_session, SchemeRepository
    >>> init_database("sqlite:///./data/scheme_corpus.db")
    >>> with get_session() as session:
    ...     schemes = SchemeRepository(session).get_all()
"""

from .database import close_database, get_engine, get_session, init_database, is_initialized
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
)
from .repositories import (
    ChangeLogRepository,
    CheckpointRepository,
    ConsumerCursorRepository,
    CorpusStateRepository,
    EligibilityRepository,
    InterestRepository,
    NotificationRepository,
    SchemeRepository,
    SyncStatusRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "is_initialized",
    # Repositories
    "SchemeRepository",
    "CorpusStateRepository",
    "ChangeLogRepository",
    "ConsumerCursorRepository",
    "SyncStatusRepository",
    "CheckpointRepository",
    "EligibilityRepository",
    "InterestRepository",
    "NotificationRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "DataIntegrityError",
]
