"""Eligibility matching engine.

Evaluates a profile against an immutable corpus snapshot:
1. Pre-filters candidates with the snapshot's index (scope, active, deadline, category)
2. Applies every mandatory predicate, including the implicit scope and
   availability gates, to decide eligibility
3. Scores eligible schemes and sorts them into a total, deterministic order
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, List, Optional

from scheme_engine.config.models import ScoringWeights
from scheme_engine.corpus.snapshot import CorpusSnapshot
from scheme_engine.domain.models import Profile, Scheme, SchemeLevel, format_number
from scheme_engine.domain.validation import check_scheme
from scheme_engine.logging import get_logger
from scheme_engine.utils.timestamps import utc_today

from .cache import EligibilityCache
from .index import SnapshotIndexRegistry, report_malformed
from .models import EligibilityExplanation, PredicateOutcome, SchemeMatch
from .scoring import ranking_key, relevance_score

logger = get_logger(__name__, component="matching")

# Errors a corrupt record can raise while its predicates are evaluated
_DATA_ERRORS = (TypeError, ValueError, AttributeError, KeyError)


@dataclass
class _Assessment:
    outcomes: List[PredicateOutcome] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        return all(o.passed for o in self.outcomes if o.mandatory)

    def explicit(self, passed: bool, mandatory: Optional[bool] = None) -> List[str]:
        return [
            o.attribute
            for o in self.outcomes
            if not o.implicit
            and o.passed is passed
            and (mandatory is None or o.mandatory is mandatory)
        ]


class MatchingEngine:
    """Evaluates profiles against corpus snapshots.

    The engine holds no mutable state that affects results: the same
    (profile, snapshot, as_of, categories) always yields the same ordered list.
    Safe to share between threads.

    Args:
        weights: Scoring weights (defaults to ScoringWeights())
        cache: Optional result cache; keyed by snapshot version, so share one
            cache only between snapshots issued by the same corpus
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        cache: Optional[EligibilityCache] = None,
    ):
        self.weights = weights or ScoringWeights()
        self.cache = cache
        self._indexes = SnapshotIndexRegistry()

    def evaluate(
        self,
        profile: Profile,
        snapshot: CorpusSnapshot,
        as_of: Optional[date] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> List[SchemeMatch]:
        """Return every scheme the profile is eligible for, best first.

        Args:
            profile: Profile to match
            snapshot: Corpus snapshot to match against
            as_of: Date for deadline and freshness checks (defaults to today, UTC)
            categories: Optional category filter (case-insensitive)

        Returns:
            Eligible SchemeMatches sorted by score desc, then level, deadline and id
        """
        as_of = as_of or utc_today()
        category_filter = (
            frozenset(c.strip().casefold() for c in categories) if categories else None
        )

        cache_key = (profile.profile_hash(), snapshot.version, as_of, category_filter)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        index = self._indexes.get(snapshot)
        ranked = []
        for scheme in index.candidates(profile, as_of, category_filter):
            try:
                assessment = self._assess(profile, scheme, as_of)
                if not assessment.eligible:
                    continue
                match = self._to_match(scheme, assessment, as_of, snapshot.version)
            except _DATA_ERRORS as e:
                report_malformed(scheme.id, [f"evaluation failed: {e}"], snapshot.version)
                continue
            ranked.append((ranking_key(match.relevance_score, scheme), match))

        ranked.sort(key=lambda item: item[0])
        matches = [match for _, match in ranked]

        if self.cache is not None:
            self.cache.put(cache_key, matches)

        logger.debug(
            f"Evaluated profile against snapshot {snapshot.version}: {len(matches)} eligible",
            extra={
                "event": "matching.evaluated",
                "version": snapshot.version,
                "eligible_count": len(matches),
            },
        )
        return matches

    def evaluate_scheme(
        self,
        profile: Profile,
        snapshot: CorpusSnapshot,
        scheme_id: str,
        as_of: Optional[date] = None,
    ) -> Optional[SchemeMatch]:
        """Evaluate a single scheme of a snapshot.

        Returns:
            The SchemeMatch when eligible; None when ineligible, absent or malformed
        """
        as_of = as_of or utc_today()
        scheme = snapshot.get(scheme_id)
        if scheme is None or scheme_id in self._indexes.get(snapshot).malformed:
            return None

        try:
            assessment = self._assess(profile, scheme, as_of)
            if not assessment.eligible:
                return None
            return self._to_match(scheme, assessment, as_of, snapshot.version)
        except _DATA_ERRORS as e:
            report_malformed(scheme.id, [f"evaluation failed: {e}"], snapshot.version)
            return None

    def explain_eligibility(
        self,
        profile: Profile,
        scheme: Scheme,
        as_of: Optional[date] = None,
        corpus_version: Optional[int] = None,
    ) -> EligibilityExplanation:
        """Explain, predicate by predicate, why a profile is or is not eligible.

        Suggestions are derived only from each unsatisfied predicate's boundary,
        e.g. "income level must be one of BPL; yours is APL".
        """
        as_of = as_of or utc_today()
        problems = check_scheme(scheme)
        if problems:
            return EligibilityExplanation(
                scheme_id=scheme.id,
                eligible=False,
                problems=problems,
                corpus_version=corpus_version,
            )

        try:
            assessment = self._assess(profile, scheme, as_of)
        except _DATA_ERRORS as e:
            return EligibilityExplanation(
                scheme_id=scheme.id,
                eligible=False,
                problems=[f"evaluation failed: {e}"],
                corpus_version=corpus_version,
            )

        unsatisfied = [o for o in assessment.outcomes if not o.passed]
        failed = _unique(o.attribute for o in unsatisfied if o.mandatory)
        missing = _unique(o.attribute for o in unsatisfied)

        return EligibilityExplanation(
            scheme_id=scheme.id,
            eligible=assessment.eligible,
            matched_criteria=assessment.explicit(passed=True),
            failed_criteria=failed,
            missing_criteria=missing,
            outcomes=list(assessment.outcomes),
            suggestions=[_suggest(outcome, scheme) for outcome in unsatisfied],
            corpus_version=corpus_version,
        )

    def _assess(self, profile: Profile, scheme: Scheme, as_of: date) -> _Assessment:
        assessment = _Assessment()
        outcomes = assessment.outcomes

        outcomes.append(
            PredicateOutcome("is_active", True, scheme.is_active, "accepting applications",
                             scheme.is_active, implicit=True)
        )
        if scheme.deadline is not None:
            outcomes.append(
                PredicateOutcome("deadline", True, scheme.deadline >= as_of,
                                 f"on or before {scheme.deadline.isoformat()}",
                                 as_of.isoformat(), implicit=True)
            )
        if scheme.level is not SchemeLevel.CENTRAL:
            outcomes.append(
                PredicateOutcome("state", True, _same(profile.state, scheme.state),
                                 scheme.state or "", profile.state, implicit=True)
            )
        if scheme.level is SchemeLevel.DISTRICT:
            outcomes.append(
                PredicateOutcome("district", True, _same(profile.district, scheme.district),
                                 scheme.district or "", profile.district, implicit=True)
            )

        for attribute in sorted(scheme.criteria):
            criterion = scheme.criteria[attribute]
            value = profile.attribute(attribute)
            outcomes.append(
                PredicateOutcome(
                    attribute=attribute,
                    mandatory=criterion.mandatory,
                    passed=criterion.evaluate(value),
                    requirement=criterion.describe(),
                    value=value,
                )
            )
        return assessment

    def _to_match(
        self, scheme: Scheme, assessment: _Assessment, as_of: date, version: int
    ) -> SchemeMatch:
        mandatory_matched = len(assessment.explicit(passed=True, mandatory=True))
        optional_matched = len(assessment.explicit(passed=True, mandatory=False))
        return SchemeMatch(
            scheme_id=scheme.id,
            relevance_score=relevance_score(
                scheme, mandatory_matched, optional_matched, self.weights, as_of
            ),
            matched_criteria=tuple(assessment.explicit(passed=True)),
            missing_criteria=tuple(assessment.explicit(passed=False, mandatory=False)),
            corpus_version=version,
        )


def _same(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.strip().casefold() == right.strip().casefold()


def _unique(items: Iterable[str]) -> List[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def _display(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def _suggest(outcome: PredicateOutcome, scheme: Scheme) -> str:
    """Boundary-derived hint for one unsatisfied predicate."""
    if outcome.implicit:
        if outcome.attribute == "is_active":
            return "this scheme is not currently accepting applications"
        if outcome.attribute == "deadline":
            return f"applications closed on {scheme.deadline.isoformat()}"
        yours = f"yours is {outcome.value}" if outcome.value else "yours is not provided"
        return f"{outcome.attribute} must be {outcome.requirement}; {yours}"

    label = outcome.attribute.replace("_", " ")
    yours = "yours is not provided" if outcome.value is None else f"yours is {_display(outcome.value)}"
    prefix = "" if outcome.mandatory else "optional: "
    return f"{prefix}{label} must be {outcome.requirement}; {yours}"
