"""Hashing utilities for scheme content hashes and profile cache keys.

This module provides deterministic hashing functions for:
- content_hash: integrity and change detection over every mutable scheme field
- profile_hash: cache key for a profile's eligibility results
- manifest fingerprint: identity of one reconciliation's work list
"""

import hashlib
import json
from typing import Any, Iterable, Mapping, Tuple


def compute_scheme_hash(payload: Mapping[str, Any]) -> str:
    """Compute the content hash of a scheme payload.

    The hash is a SHA256 over a canonical JSON rendering (sorted keys, no
    insignificant whitespace) of every field except ``content_hash`` itself.
    Both the corpus and the sync engine hash the JSON-mode dump of a Scheme, so
    a record hashes identically on both sides of the wire.

    Args:
        payload: JSON-compatible mapping of scheme fields

    Returns:
        Hexadecimal string representation of SHA256 hash (64 characters)

    Example:
        >>> compute_scheme_hash({"id": "S1", "category": "pension"})
        '...'
    """
    content = {key: value for key, value in payload.items() if key != "content_hash"}
    return hash_string(_canonical_json(content))


def compute_profile_hash(payload: Mapping[str, Any]) -> str:
    """Compute a stable hash of a profile's attributes.

    Used as the profile half of the eligibility cache key. ``user_id`` is left
    out so two users with identical attributes share cached results.

    Args:
        payload: JSON-compatible mapping of profile fields

    Returns:
        Hexadecimal SHA256 digest
    """
    content = {key: value for key, value in payload.items() if key != "user_id"}
    return hash_string(_canonical_json(content))


def fingerprint_entries(entries: Iterable[Tuple[str, str]]) -> str:
    """Fingerprint a set of (scheme_id, content_hash) pairs.

    Order-independent; the same manifest always yields the same fingerprint,
    which keys sync checkpoints.

    Args:
        entries: Iterable of (scheme_id, content_hash) pairs

    Returns:
        Hexadecimal SHA256 digest
    """
    lines = sorted(f"{scheme_id}:{content_hash}" for scheme_id, content_hash in entries)
    return hash_string("\n".join(lines))


def hash_string(value: str) -> str:
    """Compute SHA256 hash of a string value.

    Args:
        value: String to hash

    Returns:
        Hexadecimal string representation of SHA256 hash (64 characters)
    """
    hash_obj = hashlib.sha256(value.encode("utf-8"))
    return hash_obj.hexdigest()


def _canonical_json(content: Mapping[str, Any]) -> str:
    return json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
