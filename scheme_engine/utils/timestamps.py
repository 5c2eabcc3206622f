"""Timestamp utilities for UTC handling and storage formatting.

Timestamps are stored as ISO 8601 strings with a ``Z`` suffix; deadlines are
plain calendar dates compared against the UTC date.
"""

from datetime import date, datetime, timezone
from typing import Optional

STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info
    """
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Get the current UTC calendar date."""
    return utc_now().date()


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    If the datetime is timezone-naive, it's treated as UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime for database storage.

    Args:
        dt: Datetime to format (naive values are treated as UTC)

    Returns:
        ISO 8601 string with microseconds and 'Z' suffix, or None

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00.000000Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return None
    return dt_utc.strftime(STORAGE_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string back to a UTC datetime.

    Accepts values with or without microseconds and with a 'Z' suffix or an
    explicit offset.

    Args:
        value: ISO 8601 formatted string

    Returns:
        Timezone-aware datetime in UTC, or None for empty input
    """
    if not value:
        return None

    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(cleaned))


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD string (or a full ISO timestamp) to a date.

    Returns:
        The calendar date, or None for empty input

    Raises:
        ValueError: If the value is not a recognisable date
    """
    if not value:
        return None

    cleaned = value.strip()
    if len(cleaned) == 10:
        return date.fromisoformat(cleaned)
    parsed = parse_timestamp(cleaned)
    return parsed.date() if parsed else None
