"""Relevance scoring for eligible schemes."""

from datetime import date
from typing import Optional, Tuple

from scheme_engine.config.models import ScoringWeights
from scheme_engine.domain.models import Scheme

SCORE_PRECISION = 6


def freshness(deadline: Optional[date], as_of: date, horizon_days: int) -> float:
    """Freshness term in [0, 1]: 1 on the deadline day, 0 at or beyond the horizon.

    Schemes without a deadline (or already past it) score 0.
    """
    if deadline is None or deadline < as_of:
        return 0.0
    days_left = (deadline - as_of).days
    return max(0.0, 1.0 - days_left / horizon_days)


def relevance_score(
    scheme: Scheme,
    mandatory_matched: int,
    optional_matched: int,
    weights: ScoringWeights,
    as_of: date,
) -> float:
    """Weighted relevance score, rounded so equal inputs compare equal."""
    score = (
        weights.mandatory_match * mandatory_matched
        + weights.optional_match * optional_matched
        + weights.benefit_tier * weights.level_tiers[scheme.level]
        + weights.freshness * freshness(scheme.deadline, as_of, weights.freshness_horizon_days)
    )
    return round(score, SCORE_PRECISION)


def ranking_key(score: float, scheme: Scheme) -> Tuple[float, int, int, date, str]:
    """Sort key: score descending, then level, then soonest deadline (none last), then id."""
    return (
        -score,
        scheme.level.rank,
        1 if scheme.deadline is None else 0,
        scheme.deadline or date.max,
        scheme.id,
    )
