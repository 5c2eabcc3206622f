"""Per-snapshot candidate index used to pre-filter schemes before evaluation."""

import threading
import warnings
import weakref
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from scheme_engine.corpus.snapshot import CorpusSnapshot
from scheme_engine.domain.models import Profile, Scheme, SchemeLevel
from scheme_engine.domain.validation import check_scheme
from scheme_engine.logging import get_logger

from .models import MalformedRecordWarning

logger = get_logger(__name__, component="matching")


def _fold(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


class SnapshotIndex:
    """Active, well-formed schemes of one snapshot bucketed by geographic scope.

    Built once per snapshot. Malformed records are detected here, reported once,
    and never become candidates.
    """

    def __init__(self, snapshot: CorpusSnapshot):
        self.version = snapshot.version
        self.malformed: Dict[str, List[str]] = {}
        self._central: List[Scheme] = []
        self._by_state: Dict[str, List[Scheme]] = {}
        self._by_district: Dict[Tuple[str, str], List[Scheme]] = {}

        for scheme in snapshot:
            problems = check_scheme(scheme)
            if problems:
                self.malformed[scheme.id] = problems
                report_malformed(scheme.id, problems, snapshot.version)
                continue
            if not scheme.is_active:
                continue

            if scheme.level is SchemeLevel.CENTRAL:
                self._central.append(scheme)
            elif scheme.level is SchemeLevel.STATE:
                self._by_state.setdefault(_fold(scheme.state), []).append(scheme)
            else:
                key = (_fold(scheme.state), _fold(scheme.district))
                self._by_district.setdefault(key, []).append(scheme)

    def candidates(
        self,
        profile: Profile,
        as_of: date,
        categories: Optional[FrozenSet[str]] = None,
    ) -> List[Scheme]:
        """Schemes that can possibly apply to the profile on ``as_of``.

        Args:
            profile: Profile being matched
            as_of: Date the deadline gate is evaluated against
            categories: Casefolded categories to keep (None keeps all)
        """
        pool: List[Scheme] = list(self._central)
        state = _fold(profile.state)
        if state:
            pool.extend(self._by_state.get(state, ()))
            district = _fold(profile.district)
            if district:
                pool.extend(self._by_district.get((state, district), ()))

        return [
            scheme
            for scheme in pool
            if (scheme.deadline is None or scheme.deadline >= as_of)
            and (categories is None or _fold(scheme.category) in categories)
        ]


def report_malformed(scheme_id: str, problems: Iterable[str], version: int) -> None:
    """Log and warn about a skipped record."""
    problems = list(problems)
    message = f"Skipping malformed scheme {scheme_id} in snapshot {version}: {'; '.join(problems)}"
    logger.warning(
        message,
        extra={
            "event": "matching.record.malformed",
            "scheme_id": scheme_id,
            "version": version,
            "problems": problems,
        },
    )
    warnings.warn(message, MalformedRecordWarning, stacklevel=3)


class SnapshotIndexRegistry:
    """Builds each snapshot's index once and forgets it with the snapshot."""

    def __init__(self):
        self._lock = threading.Lock()
        self._indexes: "weakref.WeakKeyDictionary[CorpusSnapshot, SnapshotIndex]" = (
            weakref.WeakKeyDictionary()
        )

    def get(self, snapshot: CorpusSnapshot) -> SnapshotIndex:
        index = self._indexes.get(snapshot)
        if index is not None:
            return index

        with self._lock:
            index = self._indexes.get(snapshot)
            if index is None:
                index = SnapshotIndex(snapshot)
                self._indexes[snapshot] = index
                logger.debug(
                    f"Built candidate index for snapshot {snapshot.version}",
                    extra={
                        "event": "matching.index.built",
                        "version": snapshot.version,
                        "scheme_count": len(snapshot),
                        "malformed_count": len(index.malformed),
                    },
                )
        return index
