"""Synchronization of the scheme corpus with a remote authority."""

from .authority import HttpSchemeAuthority, SchemeAuthority
from .checkpoint import CheckpointStore, InMemoryCheckpointStore, SqlCheckpointStore
from .engine import SyncEngine
from .exceptions import AuthorityError, IntegrityError, NetworkError, SyncCancelled, SyncError
from .models import SyncOutcome, SyncResult

__all__ = [
    "SyncEngine",
    "SyncResult",
    "SyncOutcome",
    "SchemeAuthority",
    "HttpSchemeAuthority",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SqlCheckpointStore",
    "SyncError",
    "NetworkError",
    "AuthorityError",
    "IntegrityError",
    "SyncCancelled",
]
