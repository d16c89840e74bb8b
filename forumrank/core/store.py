"""Repositories holding items, profiles and per-user vote tables.

``MemoryStore`` keeps everything in dicts and is what tests use.
``SqliteStore`` keeps the same in-memory maps as a write-through cache over
the projection tables and the event log.
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Generator, Protocol

from .db import transaction
from .errors import PersistenceError
from .events import Event, EventType, append_event, event_to_dict, get_events
from .models import Item, Profile, UserVote, UserVotesTable

logger = logging.getLogger(__name__)


class Store(Protocol):
    """What the engine needs from storage."""

    matured: set[int]

    def get_item(self, item_id: int) -> Item | None: ...

    def get_profile(self, user_id: str) -> Profile | None: ...

    def get_user_votes(self, user_id: str) -> UserVotesTable: ...

    def next_item_id(self) -> int: ...

    def items_newest_first(self) -> list[Item]: ...

    def persist_item(self, item: Item) -> None: ...

    def persist_profile(self, profile: Profile) -> None: ...

    def persist_user_votes(self, user_id: str, table: UserVotesTable) -> None: ...

    def restore(
        self,
        items: list[Item],
        profiles: list[Profile],
        user_votes: dict[str, UserVotesTable],
    ) -> None: ...

    def append_event(self, event: Event) -> int: ...

    def get_events(self, event_type: EventType | None = None) -> list[dict[str, Any]]: ...

    def atomic(self) -> Any: ...


class MemoryStore:
    """In-process store backed by plain dicts."""

    def __init__(self) -> None:
        self.items: dict[int, Item] = {}
        self.profiles: dict[str, Profile] = {}
        self.user_votes: dict[str, UserVotesTable] = {}
        self.matured: set[int] = set()
        self._events: list[dict[str, Any]] = []

    def get_item(self, item_id: int) -> Item | None:
        return self.items.get(item_id)

    def get_profile(self, user_id: str) -> Profile | None:
        return self.profiles.get(user_id)

    def get_user_votes(self, user_id: str) -> UserVotesTable:
        return self.user_votes.setdefault(user_id, {})

    def next_item_id(self) -> int:
        return max(self.items, default=0) + 1

    def items_newest_first(self) -> list[Item]:
        return sorted(self.items.values(), key=lambda i: -(i.id or 0))

    def persist_item(self, item: Item) -> None:
        if item.id is None:
            raise PersistenceError("cannot persist an item without an id")
        self.items[item.id] = item

    def persist_profile(self, profile: Profile) -> None:
        self.profiles[profile.id] = profile

    def persist_user_votes(self, user_id: str, table: UserVotesTable) -> None:
        self.user_votes[user_id] = table

    def restore(
        self,
        items: list[Item],
        profiles: list[Profile],
        user_votes: dict[str, UserVotesTable],
    ) -> None:
        """Put back copies taken before a failed write, without persisting them."""
        for item in items:
            self.items[item.id] = item
        for profile in profiles:
            self.profiles[profile.id] = profile
        self.user_votes.update(user_votes)

    def append_event(self, event: Event) -> int:
        seq = len(self._events) + 1
        self._events.append(event_to_dict(event, seq))
        return seq

    def get_events(self, event_type: EventType | None = None) -> list[dict[str, Any]]:
        if event_type is None:
            return list(self._events)
        return [e for e in self._events if e["event_type"] == event_type.value]

    @contextmanager
    def atomic(self) -> Generator[None, None, None]:
        yield


class SqliteStore(MemoryStore):
    """Write-through store over the SQLite projection tables."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__()
        self.conn = conn
        self.load()

    def load(self) -> None:
        """Load all projections into memory."""
        self.items.clear()
        self.profiles.clear()
        self.user_votes.clear()

        for row in self.conn.execute("SELECT data_json FROM items ORDER BY item_id"):
            item = Item.model_validate_json(row["data_json"])
            self.items[item.id] = item

        for row in self.conn.execute("SELECT data_json FROM profiles ORDER BY user_id"):
            profile = Profile.model_validate_json(row["data_json"])
            self.profiles[profile.id] = profile

        for row in self.conn.execute("SELECT user_id, item_id, dir, time FROM user_votes"):
            table = self.user_votes.setdefault(row["user_id"], {})
            table[row["item_id"]] = UserVote(dir=row["dir"], time=row["time"])

        logger.info(
            "Loaded %d items, %d profiles", len(self.items), len(self.profiles)
        )

    def persist_item(self, item: Item) -> None:
        super().persist_item(item)
        self._write(
            """
            INSERT OR REPLACE INTO items
            (item_id, item_type, author_id, parent_id, time, score, dead, deleted, data_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.type.value,
                item.by,
                item.parent,
                item.time,
                item.score,
                int(item.dead),
                int(item.deleted),
                item.model_dump_json(),
            ),
        )

    def persist_profile(self, profile: Profile) -> None:
        super().persist_profile(profile)
        self._write(
            """
            INSERT OR REPLACE INTO profiles (user_id, created, karma, data_json)
            VALUES (?, ?, ?, ?)
            """,
            (profile.id, profile.created, profile.karma, profile.model_dump_json()),
        )

    def persist_user_votes(self, user_id: str, table: UserVotesTable) -> None:
        super().persist_user_votes(user_id, table)
        for item_id, vote in table.items():
            self._write(
                """
                INSERT OR IGNORE INTO user_votes (user_id, item_id, dir, time)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, item_id, vote.dir.value, vote.time),
            )

    def append_event(self, event: Event) -> int:
        try:
            return append_event(self.conn, event)
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to append {event.event_type.value} event") from e

    def get_events(self, event_type: EventType | None = None) -> list[dict[str, Any]]:
        return get_events(self.conn, event_type)

    @contextmanager
    def atomic(self) -> Generator[None, None, None]:
        try:
            with transaction(self.conn):
                yield
        except sqlite3.Error as e:
            logger.error("Write failed, rolled back: %s", e)
            raise PersistenceError(str(e)) from e

    def _write(self, sql: str, params: tuple) -> None:
        try:
            self.conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e


def dump_json(model: Item | Profile) -> dict[str, Any]:
    """Serialize a model for an event payload."""
    return model.model_dump(mode="json")
