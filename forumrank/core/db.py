"""SQLite database connection and schema management."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

DEFAULT_DB_PATH = Path("forum.db")

EVENTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id TEXT UNIQUE NOT NULL,
    event_type TEXT NOT NULL,
    time INTEGER NOT NULL,
    actor_id TEXT,
    item_id INTEGER,
    status TEXT,
    ranking_version TEXT,
    created_at TEXT NOT NULL,
    payload_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_item ON events(item_id);
CREATE INDEX IF NOT EXISTS idx_events_actor ON events(actor_id);
"""

PROJECTIONS_SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    created INTEGER NOT NULL,
    karma INTEGER NOT NULL,
    data_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items (
    item_id INTEGER PRIMARY KEY,
    item_type TEXT NOT NULL CHECK (item_type IN ('story', 'comment', 'poll', 'pollopt')),
    author_id TEXT,
    parent_id INTEGER,
    time INTEGER NOT NULL,
    score INTEGER NOT NULL,
    dead INTEGER NOT NULL DEFAULT 0,
    deleted INTEGER NOT NULL DEFAULT 0,
    data_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_votes (
    user_id TEXT NOT NULL,
    item_id INTEGER NOT NULL,
    dir TEXT NOT NULL CHECK (dir IN ('up', 'down')),
    time INTEGER NOT NULL,
    PRIMARY KEY (user_id, item_id)
);

CREATE INDEX IF NOT EXISTS idx_items_author ON items(author_id);
CREATE INDEX IF NOT EXISTS idx_items_parent ON items(parent_id);
CREATE INDEX IF NOT EXISTS idx_items_time ON items(time);
"""

PROJECTION_TABLES = ["user_votes", "items", "profiles"]


def get_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create a new connection with optimized PRAGMAs."""
    conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Cursor, None, None]:
    """Context manager for explicit transactions."""
    cursor = conn.cursor()
    cursor.execute("BEGIN")
    try:
        yield cursor
        cursor.execute("COMMIT")
    except Exception:
        cursor.execute("ROLLBACK")
        raise
    finally:
        cursor.close()


def init_db(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Initialize database with all schemas."""
    conn = get_connection(db_path)
    conn.executescript(EVENTS_SCHEMA)
    conn.executescript(PROJECTIONS_SCHEMA)
    return conn


def drop_projections(conn: sqlite3.Connection) -> None:
    """Drop all projection tables (preserves events)."""
    for table in PROJECTION_TABLES:
        conn.execute(f"DROP TABLE IF EXISTS {table}")


def recreate_projections(conn: sqlite3.Connection) -> None:
    """Recreate projection table schemas."""
    conn.executescript(PROJECTIONS_SCHEMA)
