"""Event models and append helpers for the event log."""

import json
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from .models import VoteDirection, seconds


class EventType(str, Enum):
    """Types of events in the system."""

    PROFILE_CREATED = "profile_created"
    PROFILE_UPDATED = "profile_updated"
    ITEM_CREATED = "item_created"
    ITEM_UPDATED = "item_updated"
    VOTE = "vote"


class VoteStatus(str, Enum):
    """Status of a vote attempt."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


def utc_now() -> str:
    """Return current UTC time in ISO-8601 format."""
    return datetime.now(timezone.utc).isoformat()


def new_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid4())


class Event(BaseModel):
    """Base event model."""

    event_id: str = Field(default_factory=new_uuid)
    event_type: EventType
    time: int = Field(default_factory=seconds)
    actor_id: str | None = None
    item_id: int | None = None
    status: VoteStatus | None = None
    ranking_version: str | None = None
    created_at: str = Field(default_factory=utc_now)
    payload: dict[str, Any] = Field(default_factory=dict)


class VotePayload(BaseModel):
    """Payload for vote events.

    Accepted votes carry the classification made at validation time so
    that replay reproduces the same effects without re-validating.
    """

    direction: VoteDirection
    ip: str
    reason: str | None = None
    is_sockpuppet: bool = False
    counts_for_karma: bool = False
    is_admin: bool = False
    author_id: str | None = None


def event_to_dict(event: Event, seq: int) -> dict[str, Any]:
    """Shape an event like a row returned by ``get_events``."""
    return {
        "seq": seq,
        "event_id": event.event_id,
        "event_type": event.event_type.value,
        "time": event.time,
        "actor_id": event.actor_id,
        "item_id": event.item_id,
        "status": event.status.value if event.status else None,
        "ranking_version": event.ranking_version,
        "created_at": event.created_at,
        "payload": event.payload,
    }


def append_event(conn: sqlite3.Connection, event: Event) -> int:
    """Append an event to the event log. Returns the sequence number."""
    cursor = conn.execute(
        """
        INSERT INTO events (
            event_id, event_type, time, actor_id, item_id, status,
            ranking_version, created_at, payload_json
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event.event_id,
            event.event_type.value,
            event.time,
            event.actor_id,
            event.item_id,
            event.status.value if event.status else None,
            event.ranking_version,
            event.created_at,
            json.dumps(event.payload),
        ),
    )
    return cursor.lastrowid or 0


def get_events(
    conn: sqlite3.Connection,
    event_type: EventType | None = None,
    from_seq: int = 0,
) -> list[dict[str, Any]]:
    """Retrieve events from the log, optionally filtered by type."""
    query = "SELECT * FROM events WHERE seq > ?"
    params: list[Any] = [from_seq]

    if event_type:
        query += " AND event_type = ?"
        params.append(event_type.value)

    query += " ORDER BY seq"
    rows = conn.execute(query, params).fetchall()

    return [
        {
            "seq": row["seq"],
            "event_id": row["event_id"],
            "event_type": row["event_type"],
            "time": row["time"],
            "actor_id": row["actor_id"],
            "item_id": row["item_id"],
            "status": row["status"],
            "ranking_version": row["ranking_version"],
            "created_at": row["created_at"],
            "payload": json.loads(row["payload_json"]),
        }
        for row in rows
    ]
