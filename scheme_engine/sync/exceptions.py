"""Exceptions raised while reconciling with a remote scheme authority."""

from typing import Optional


class SyncError(Exception):
    """Base exception for synchronization errors."""

    pass


class NetworkError(SyncError):
    """Transient failure talking to the authority (timeout, connection, 5xx, 429).

    Retried with backoff; exhaustion marks the corpus stale.
    """

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class AuthorityError(SyncError):
    """Permanent failure from the authority (4xx, unparseable response).

    Not retried.
    """

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class IntegrityError(SyncError):
    """A fetched record's content hash disagrees with its manifest entry.

    The record is dropped for this cycle; the rest of the cycle proceeds.
    """

    def __init__(self, scheme_id: str, expected_hash: str, actual_hash: str):
        self.scheme_id = scheme_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Content hash mismatch for {scheme_id}: manifest {expected_hash}, fetched {actual_hash}"
        )


class SyncCancelled(SyncError):
    """Raised internally when the cancel event is set mid-cycle."""

    pass
