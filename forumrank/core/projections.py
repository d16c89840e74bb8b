"""Projection management: rebuild state from events."""

import hashlib
import json
import logging
import sqlite3
from typing import Any

from .db import drop_projections, recreate_projections, transaction
from .events import EventType, VotePayload, VoteStatus, get_events
from .models import Item, ItemType, Profile
from .store import MemoryStore, SqliteStore, Store
from .voting import VOTE_WINDOW, VoteValidation, apply_karma, apply_vote, record_user_vote

logger = logging.getLogger(__name__)


def link_to_parent(store: Store, item: Item) -> Item | None:
    """Register a new item with its parent. Returns the parent if it changed."""
    if item.parent is None or item.id is None:
        return None
    parent = store.get_item(item.parent)
    if parent is None:
        return None

    children = parent.parts if item.type is ItemType.POLLOPT else parent.kids
    if item.id in children:
        return None
    children.append(item.id)
    return parent


def apply_event(
    store: MemoryStore, event: dict[str, Any], vote_window: int = VOTE_WINDOW
) -> None:
    """Apply a single event to an in-memory store.

    ``vote_window`` must match the one the engine truncated ledgers with.
    """
    event_type = event["event_type"]
    payload = event["payload"]

    if event_type in (EventType.PROFILE_CREATED.value, EventType.PROFILE_UPDATED.value):
        profile = Profile.model_validate(payload["profile"])
        store.profiles[profile.id] = profile

    elif event_type == EventType.ITEM_CREATED.value:
        item = Item.model_validate(payload["item"])
        store.items[item.id] = item
        link_to_parent(store, item)

    elif event_type == EventType.ITEM_UPDATED.value:
        item = Item.model_validate(payload["item"])
        store.items[item.id] = item

    elif event_type == EventType.VOTE.value and event["status"] == VoteStatus.ACCEPTED.value:
        vote = VotePayload.model_validate(payload)
        item = store.get_item(event["item_id"])
        voter = store.get_profile(event["actor_id"])
        if item is None or voter is None:
            logger.warning("Skipping vote event %s with missing item or voter", event["seq"])
            return

        validation = VoteValidation(
            valid=True,
            counts_for_score=True,
            counts_for_karma=vote.counts_for_karma,
            is_sockpuppet=vote.is_sockpuppet,
        )
        apply_vote(item, voter, vote.direction, vote.ip, validation, vote.is_admin, event["time"])
        record_user_vote(
            voter,
            store.get_user_votes(voter.id),
            item,
            vote.direction,
            event["time"],
            vote_window,
        )

        if vote.counts_for_karma and vote.author_id:
            author = store.get_profile(vote.author_id)
            if author is not None:
                apply_karma(author, vote.direction)


def replay_events(
    events: list[dict[str, Any]], vote_window: int = VOTE_WINDOW
) -> MemoryStore:
    """Rebuild in-memory state from an ordered event list."""
    store = MemoryStore()
    for event in events:
        apply_event(store, event, vote_window)
    return store


def replay_all(conn: sqlite3.Connection, vote_window: int = VOTE_WINDOW) -> int:
    """Drop and rebuild all projections from the event log. Returns event count."""
    events = get_events(conn)
    rebuilt = replay_events(events, vote_window)

    drop_projections(conn)
    recreate_projections(conn)

    target = SqliteStore(conn)
    with transaction(conn):
        for profile in rebuilt.profiles.values():
            target.persist_profile(profile)
        for item in rebuilt.items.values():
            target.persist_item(item)
        for user_id, table in rebuilt.user_votes.items():
            target.persist_user_votes(user_id, table)

    logger.info("Replayed %d events", len(events))
    return len(events)


def get_projection_hash(conn: sqlite3.Connection) -> str:
    """Compute a deterministic hash of projection state for verification."""
    h = hashlib.sha256()

    for table in ["profiles", "items", "user_votes"]:
        rows = conn.execute(f"SELECT * FROM {table} ORDER BY 1, 2").fetchall()
        for row in rows:
            h.update(json.dumps(dict(row), sort_keys=True).encode())

    return h.hexdigest()


def recompute_score(item: Item) -> int:
    """Score implied by the item's own vote list."""
    return sum(v.dir.delta for v in item.votes)
