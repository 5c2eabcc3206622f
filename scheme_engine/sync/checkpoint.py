"""Checkpoint stores for resumable reconciliation.

Records confirmed during a cycle are saved one by one under the fingerprint of
the cycle's work list. A later cycle with the same work list resumes from them
instead of fetching again.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from scheme_engine.domain.models import Scheme
from scheme_engine.persistence import CheckpointRepository, get_session


class CheckpointStore(ABC):
    """Stores confirmed records keyed by work-list fingerprint."""

    @abstractmethod
    def load(self, fingerprint: str) -> Dict[str, Scheme]:
        pass

    @abstractmethod
    def save(self, fingerprint: str, scheme: Scheme) -> None:
        pass

    @abstractmethod
    def clear(self, fingerprint: Optional[str] = None) -> None:
        """Forget one fingerprint, or everything when fingerprint is None."""
        pass


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local checkpoints (lost on restart)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Scheme]] = {}

    def load(self, fingerprint: str) -> Dict[str, Scheme]:
        with self._lock:
            return dict(self._records.get(fingerprint, {}))

    def save(self, fingerprint: str, scheme: Scheme) -> None:
        with self._lock:
            self._records.setdefault(fingerprint, {})[scheme.id] = scheme

    def clear(self, fingerprint: Optional[str] = None) -> None:
        with self._lock:
            if fingerprint is None:
                self._records.clear()
            else:
                self._records.pop(fingerprint, None)


class SqlCheckpointStore(CheckpointStore):
    """Checkpoints in the sync_checkpoints table; survive restarts."""

    def load(self, fingerprint: str) -> Dict[str, Scheme]:
        with get_session() as session:
            return CheckpointRepository(session).load(fingerprint)

    def save(self, fingerprint: str, scheme: Scheme) -> None:
        with get_session() as session:
            CheckpointRepository(session).save(fingerprint, scheme)

    def clear(self, fingerprint: Optional[str] = None) -> None:
        with get_session() as session:
            CheckpointRepository(session).clear(fingerprint)
