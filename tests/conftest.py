"""Pytest fixtures for tests."""

import tempfile
from pathlib import Path

import pytest

from forumrank.api.forum import ForumEngine
from forumrank.core.db import init_db
from forumrank.core.settings import Settings
from forumrank.core.store import MemoryStore, SqliteStore

NOW = 1_700_000_000
DAY = 86400


@pytest.fixture
def db_conn():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    conn = init_db(db_path)

    yield conn

    conn.close()
    db_path.unlink(missing_ok=True)
    # Also remove WAL and SHM files
    Path(str(db_path) + "-wal").unlink(missing_ok=True)
    Path(str(db_path) + "-shm").unlink(missing_ok=True)


@pytest.fixture
def settings():
    """Settings with one admin and defaults otherwise."""
    return Settings(admins=["admin"], lightweight_sites=["imgur.com"])


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(store, settings):
    """Engine over an in-memory store."""
    return ForumEngine(store, settings)


@pytest.fixture
def sqlite_engine(db_conn, settings):
    """Engine over a SQLite-backed store."""
    return ForumEngine(SqliteStore(db_conn), settings)
