"""Structural checks for scheme records.

Schemes are parsed leniently so that a malformed record can still travel inside
a delta (and be rejected by the corpus with a precise message) or sit in a
restored snapshot (and be skipped by matching). ``check_scheme`` is the single
definition of "well-formed" both of those paths share.
"""

from typing import List

from .models import PROFILE_ATTRIBUTES, Scheme, SchemeLevel


def check_scheme(scheme: Scheme) -> List[str]:
    """Return every invariant violation in a scheme, each prefixed with its field.

    Checks:
    - each criterion references a known profile attribute
    - the criterion kind fits the attribute's value type
    - each criterion's own invariants (range bounds, non-empty sets)
    - state/district schemes declare the scope they are limited to

    Args:
        scheme: Scheme to check

    Returns:
        List of problems such as ``"criteria.age: min 50 > max 30"``;
        empty when the scheme is well-formed
    """
    problems: List[str] = []

    for attribute, criterion in scheme.criteria.items():
        field = f"criteria.{attribute}"
        expected_type = PROFILE_ATTRIBUTES.get(attribute)

        if expected_type is None:
            problems.append(f"{field}: unknown profile attribute")
            continue

        if criterion.attribute_type is not expected_type:
            problems.append(
                f"{field}: {criterion.kind} criterion cannot apply to "
                f"{expected_type.value} attribute"
            )
            continue

        for problem in criterion.problems():
            problems.append(f"{field}: {problem}")

    if scheme.level in (SchemeLevel.STATE, SchemeLevel.DISTRICT) and not scheme.state:
        problems.append(f"state: required for {scheme.level.value}-level schemes")
    if scheme.level is SchemeLevel.DISTRICT and not scheme.district:
        problems.append("district: required for district-level schemes")

    return problems
