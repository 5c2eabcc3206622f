"""Utility functions for hashing and time handling."""

from .hashing import compute_profile_hash, compute_scheme_hash, fingerprint_entries, hash_string
from .timestamps import (
    ensure_utc,
    format_timestamp,
    parse_date,
    parse_timestamp,
    utc_now,
    utc_today,
)

__all__ = [
    # Hashing
    "compute_scheme_hash",
    "compute_profile_hash",
    "fingerprint_entries",
    "hash_string",
    # Timestamps
    "utc_now",
    "utc_today",
    "ensure_utc",
    "format_timestamp",
    "parse_timestamp",
    "parse_date",
]
