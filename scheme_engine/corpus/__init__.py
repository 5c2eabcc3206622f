"""Versioned scheme corpus: snapshots, delta application and change events."""

from .channel import ChangeEventChannel
from .corpus import CorpusStatus, SchemeCorpus
from .exceptions import ConflictError, CorpusError, HistoryUnavailableError, ValidationError
from .snapshot import CorpusSnapshot
from .storage import CorpusStore, SqlCorpusStore, StoredCorpus

__all__ = [
    "SchemeCorpus",
    "CorpusStatus",
    "CorpusSnapshot",
    "ChangeEventChannel",
    "CorpusStore",
    "SqlCorpusStore",
    "StoredCorpus",
    "CorpusError",
    "ValidationError",
    "ConflictError",
    "HistoryUnavailableError",
]
