"""Eligibility matching: ranking, explanation and result caching.

This module provides:
- MatchingEngine: evaluates profiles against corpus snapshots
- SchemeMatch / EligibilityExplanation / PredicateOutcome: result types
- EligibilityCache: LRU of evaluation results
- MalformedRecordWarning: emitted when a record is skipped
"""

from .cache import EligibilityCache
from .engine import MatchingEngine
from .models import EligibilityExplanation, MalformedRecordWarning, PredicateOutcome, SchemeMatch
from .scoring import freshness, ranking_key, relevance_score

__all__ = [
    "MatchingEngine",
    "EligibilityCache",
    "SchemeMatch",
    "PredicateOutcome",
    "EligibilityExplanation",
    "MalformedRecordWarning",
    "freshness",
    "ranking_key",
    "relevance_score",
]
