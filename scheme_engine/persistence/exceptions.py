"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers can catch
database failures with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - get_session() called before init_database()
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised on constraint violations (duplicate keys, bad references)."""

    pass
