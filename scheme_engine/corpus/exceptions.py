"""Corpus exceptions."""

from typing import List, Optional


class CorpusError(Exception):
    """Base exception for corpus operations."""

    pass


class ValidationError(CorpusError):
    """Raised when a delta is rejected. The corpus version is left unchanged.

    Attributes:
        field: Path of the first offending field, e.g. ``schemes[S1].criteria.age``
        errors: Every problem found, each prefixed with its field path
    """

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[List[str]] = None):
        self.field = field
        self.errors = errors or [message]
        super().__init__(message)


class ConflictError(CorpusError):
    """Raised by a corpus store when another writer advanced the version first."""

    def __init__(self, expected_version: int, message: Optional[str] = None):
        self.expected_version = expected_version
        super().__init__(
            message or f"Corpus version changed underneath writer (expected {expected_version})"
        )


class HistoryUnavailableError(CorpusError):
    """Raised when changes since a version can no longer be reconstructed."""

    def __init__(self, requested: int, oldest: int, current: int):
        self.requested = requested
        self.oldest = oldest
        self.current = current
        super().__init__(
            f"History for version {requested} unavailable (retained: {oldest}..{current})"
        )
