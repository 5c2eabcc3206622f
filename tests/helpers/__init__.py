"""Test helper utilities for Scheme Eligibility Engine tests."""

from .builders import add_delta, ids, make_profile, make_scheme, remove_delta, senior_scheme, update_delta
from .fixture_authority import FixtureAuthority

__all__ = [
    "FixtureAuthority",
    "make_scheme",
    "senior_scheme",
    "make_profile",
    "add_delta",
    "update_delta",
    "remove_delta",
    "ids",
]
