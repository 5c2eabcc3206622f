"""Data models for eligibility matching results and explanations."""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple


class MalformedRecordWarning(UserWarning):
    """A scheme record in a snapshot was skipped because it is malformed."""

    pass


@dataclass(frozen=True)
class SchemeMatch:
    """One eligible scheme for a profile, with its score and rationale.

    Attributes:
        scheme_id: Matched scheme
        relevance_score: Weighted score, higher ranks first
        matched_criteria: Attributes whose criteria the profile satisfies
        missing_criteria: Optional criteria the profile does not satisfy
        corpus_version: Version of the snapshot the match was computed on
    """

    scheme_id: str
    relevance_score: float
    matched_criteria: Tuple[str, ...] = ()
    missing_criteria: Tuple[str, ...] = ()
    corpus_version: int = 0


@dataclass(frozen=True)
class PredicateOutcome:
    """Result of evaluating one predicate of a scheme against a profile.

    ``implicit`` marks the scope and availability gates (state, district,
    active, deadline) that apply to every scheme without being listed in its
    criteria.
    """

    attribute: str
    mandatory: bool
    passed: bool
    requirement: str
    value: Any = None
    implicit: bool = False


@dataclass
class EligibilityExplanation:
    """Predicate-by-predicate account of one scheme for one profile.

    Attributes:
        eligible: True iff every mandatory predicate holds
        matched_criteria: Criteria the profile satisfies
        failed_criteria: Mandatory predicates that do not hold
        missing_criteria: Every criterion the profile does not satisfy
        outcomes: Individual predicate results, implicit gates first
        suggestions: One boundary-derived hint per unsatisfied predicate
    """

    scheme_id: str
    eligible: bool
    matched_criteria: List[str] = field(default_factory=list)
    failed_criteria: List[str] = field(default_factory=list)
    missing_criteria: List[str] = field(default_factory=list)
    outcomes: List[PredicateOutcome] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)
    corpus_version: Optional[int] = None

    @property
    def is_malformed(self) -> bool:
        return bool(self.problems)
