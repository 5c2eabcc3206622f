"""Soft configuration checks that warn rather than fail."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """Check a raw configuration dictionary for likely mistakes.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    authority = config_dict.get("authority", {})
    if isinstance(authority, dict):
        base_url = authority.get("base_url", "")
        if isinstance(base_url, str) and base_url.startswith("http://"):
            warning_messages.append(
                f"Authority base_url uses plain HTTP ({base_url}); payload integrity "
                "relies on content hashes only"
            )

    sync = config_dict.get("sync", {})
    if isinstance(sync, dict):
        max_attempts = sync.get("max_attempts")
        if isinstance(max_attempts, int) and max_attempts == 1:
            warning_messages.append(
                "sync.max_attempts is 1: any transient failure will mark the corpus stale"
            )

    scoring = config_dict.get("scoring", {})
    if isinstance(scoring, dict):
        weights = [
            scoring.get(name)
            for name in ("mandatory_match", "optional_match", "benefit_tier", "freshness")
        ]
        if all(isinstance(w, (int, float)) and w == 0 for w in weights):
            warning_messages.append(
                "All scoring weights are zero; ranking falls back to level, deadline and id"
            )

    notifications = config_dict.get("notifications", {})
    if isinstance(notifications, dict):
        batch_size = notifications.get("batch_size")
        if isinstance(batch_size, int) and batch_size > 10_000:
            warning_messages.append(
                f"Large notifications.batch_size ({batch_size}) may delay concurrent matching queries"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
