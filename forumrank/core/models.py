"""Item, profile and vote records for the forum."""

import time
from enum import Enum

from pydantic import BaseModel, Field


class ItemType(str, Enum):
    """Kinds of submitted items."""

    STORY = "story"
    COMMENT = "comment"
    POLL = "poll"
    POLLOPT = "pollopt"


class VoteDirection(str, Enum):
    """Direction of a vote."""

    UP = "up"
    DOWN = "down"

    @property
    def delta(self) -> int:
        """Score and karma change carried by a vote in this direction."""
        return 1 if self is VoteDirection.UP else -1


def seconds() -> int:
    """Return current time in whole seconds since the epoch."""
    return int(time.time())


def minutes_since(timestamp: int, now: int | None = None) -> float:
    """Minutes elapsed since a timestamp."""
    if now is None:
        now = seconds()
    return (now - timestamp) / 60


class ItemVote(BaseModel):
    """A vote as stored on the item, most recent first."""

    time: int
    ip: str
    user: str
    dir: VoteDirection
    score: int


class Item(BaseModel):
    """A story, comment, poll or poll option."""

    id: int | None = None
    type: ItemType
    by: str | None = None
    ip: str | None = None
    time: int = Field(default_factory=seconds)
    url: str | None = None
    title: str | None = None
    text: str | None = None
    votes: list[ItemVote] = Field(default_factory=list)
    score: int = 0
    sockvotes: int = 0
    flags: list[str] = Field(default_factory=list)
    dead: bool = False
    deleted: bool = False
    parts: list[int] = Field(default_factory=list)
    parent: int | None = None
    kids: list[int] = Field(default_factory=list)
    keys: list[str] = Field(default_factory=list)


class ProfileVote(BaseModel):
    """An entry in a user's bounded vote history."""

    time: int
    id: int
    by: str
    sitename: str | None = None
    dir: VoteDirection


class UserVote(BaseModel):
    """An entry in the per-user vote table keyed by item id."""

    dir: VoteDirection
    time: int


class Profile(BaseModel):
    """A registered user."""

    id: str
    name: str | None = None
    created: int = Field(default_factory=seconds)
    auth: int = 0
    votes: list[ProfileVote] = Field(default_factory=list)
    karma: int = 1
    weight: float = 0.5
    ignore: bool = False
    showdead: bool = False
    noprocrast: bool = False
    firstview: int | None = None
    lastview: int | None = None
    maxvisit: int = 20
    minaway: int = 180
    keys: list[str] = Field(default_factory=list)
    delay: int = 0


UserVotesTable = dict[int, UserVote]


def item_age(item: Item, now: int | None = None) -> float:
    """Item age in minutes, never negative for items stamped ahead of ``now``."""
    return max(0.0, minutes_since(item.time, now))


def user_age(profile: Profile, now: int | None = None) -> float:
    """Account age in minutes."""
    return minutes_since(profile.created, now)


def is_live(item: Item) -> bool:
    return not item.dead and not item.deleted


def is_metastory(item: Item | None) -> bool:
    """Stories and polls are the items that appear on listing pages."""
    return item is not None and item.type in (ItemType.STORY, ItemType.POLL)


def is_author(user_id: str | None, item: Item) -> bool:
    return user_id is not None and user_id == item.by


def has_key(profile: Profile, key: str) -> bool:
    return key in profile.keys
