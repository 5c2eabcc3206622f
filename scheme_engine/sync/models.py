"""Data models describing the outcome of a reconciliation cycle."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from scheme_engine.domain.models import ChangeEvent


class SyncOutcome(str, Enum):
    """How a reconciliation cycle ended."""

    APPLIED = "applied"  # a delta changed the corpus
    UP_TO_DATE = "up_to_date"  # nothing to change
    STALE = "stale"  # authority unreachable; last good snapshot keeps serving
    CANCELLED = "cancelled"  # cancel event set; checkpoint kept for resumption
    REJECTED = "rejected"  # corpus refused the assembled delta


@dataclass
class SyncResult:
    """
    Result of one reconciliation cycle.

    Attributes:
        outcome: How the cycle ended
        corpus_version: Corpus version after the cycle
        manifest_version: Version reported by the authority's manifest
        fetched_count: Record payloads fetched from the authority this cycle
        resumed_count: Records taken from a checkpoint instead of fetched
        removed_count: Removal ops included in the delta
        integrity_failures: Ids dropped because their hash disagreed with the manifest
        dropped: Ids dropped because the authority returned an unusable payload
        events: ChangeEvents produced by the applied delta
        error_message: Why the cycle went stale or was rejected
        duration_seconds: Wall-clock duration
    """

    outcome: SyncOutcome
    corpus_version: int
    manifest_version: Optional[int] = None
    fetched_count: int = 0
    resumed_count: int = 0
    removed_count: int = 0
    integrity_failures: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    events: List[ChangeEvent] = field(default_factory=list)
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def had_errors(self) -> bool:
        return bool(
            self.outcome in (SyncOutcome.STALE, SyncOutcome.REJECTED)
            or self.integrity_failures
            or self.dropped
        )
