"""Durable backing stores for the scheme corpus."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence

from scheme_engine.domain.models import ChangeEvent, Scheme
from scheme_engine.logging import get_logger
from scheme_engine.persistence import (
    ChangeLogRepository,
    CorpusStateRepository,
    SchemeRepository,
    get_session,
)

from .exceptions import ConflictError

logger = get_logger(__name__, component="corpus")


@dataclass
class StoredCorpus:
    """Corpus state as read back from a store."""

    version: int
    schemes: List[Scheme] = field(default_factory=list)
    events: List[ChangeEvent] = field(default_factory=list)


class CorpusStore(ABC):
    """Persists corpus writes. One ``commit`` per applied delta."""

    @abstractmethod
    def load(self, history_limit: int) -> StoredCorpus:
        """Read the current records plus the change log of the last ``history_limit`` versions."""
        pass

    @abstractmethod
    def commit(
        self,
        expected_version: int,
        new_version: int,
        upserts: Sequence[Scheme],
        removals: Sequence[str],
        events: Sequence[ChangeEvent],
    ) -> None:
        """Atomically write records, the version counter and the change log.

        Raises:
            ConflictError: If the stored version is not ``expected_version``
        """
        pass


class SqlCorpusStore(CorpusStore):
    """CorpusStore over the SQLAlchemy tables (schemes, corpus_state, change_log).

    Requires init_database() to have been called.
    """

    def load(self, history_limit: int) -> StoredCorpus:
        with get_session() as session:
            version = CorpusStateRepository(session).get_version()
            schemes = SchemeRepository(session).get_all()
            events = ChangeLogRepository(session).get_since(max(0, version - history_limit))

        logger.info(
            f"Loaded corpus version {version} ({len(schemes)} schemes)",
            extra={"event": "corpus.store.loaded", "version": version, "scheme_count": len(schemes)},
        )
        return StoredCorpus(version=version, schemes=schemes, events=events)

    def commit(
        self,
        expected_version: int,
        new_version: int,
        upserts: Sequence[Scheme],
        removals: Sequence[str],
        events: Sequence[ChangeEvent],
    ) -> None:
        with get_session() as session:
            if not CorpusStateRepository(session).compare_and_set(expected_version, new_version):
                raise ConflictError(expected_version)

            schemes = SchemeRepository(session)
            for scheme in upserts:
                schemes.upsert(scheme, new_version)
            for scheme_id in removals:
                schemes.delete(scheme_id)

            ChangeLogRepository(session).append(events)
