"""Shared fixtures for the test suite."""

import pytest

from scheme_engine.persistence import close_database, init_database


@pytest.fixture
def database(tmp_path):
    """Initialize a file-backed sqlite database for one test.

    File-backed so worker threads share the same data.
    """
    init_database(f"sqlite:///{tmp_path / 'test.db'}")
    yield tmp_path / "test.db"
    close_database()
