"""Vote validation and application.

Validation is a pure decision over the voter, the item and the voter's
history. Application mutates the item, the voter's ledgers and the
author's karma, in that order, and only after validation accepted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from .errors import InvariantError
from .models import (
    Item,
    ItemType,
    ItemVote,
    Profile,
    ProfileVote,
    UserVote,
    UserVotesTable,
    VoteDirection,
    is_author,
    is_live,
    is_metastory,
    seconds,
    user_age,
)
from .ranking import sitename

LEGIT_THRESHOLD = 0
NEW_AGE_THRESHOLD = 0  # minutes
NEW_KARMA_THRESHOLD = 2
DOWNVOTE_RATIO_LIMIT = 0.65
VOTE_WINDOW = 100
DOWNVOTE_THRESHOLD = 200  # karma needed to downvote
LOWEST_SCORE = -4
KARMA_BOMB_RUN = 3

NOVOTE_KEY = "novote"
NODOWNS_KEY = "nodowns"
NOKILL_KEY = "nokill"


class RejectReason(str, Enum):
    """Why a vote was refused."""

    ALREADY_VOTED = "already voted"
    ITEM_DEAD = "item is dead"
    VOTE_RESTRICTED = "vote restricted"
    DOWNVOTES_DISABLED = "downvotes disabled"
    KARMA_BOMBING = "karma bombing prevented"
    DUPLICATE_IP = "duplicate ip vote"
    DOWNVOTE_RATIO = "downvote ratio exceeded"
    DOWNVOTE_NOT_ALLOWED = "downvote not allowed"
    PROCRASTINATING = "procrastinating"
    NOT_FOUND = "not found"


@dataclass(frozen=True)
class VotePolicy:
    """Thresholds used by the vote checks."""

    legit_threshold: int = LEGIT_THRESHOLD
    new_age_threshold: int = NEW_AGE_THRESHOLD
    new_karma_threshold: int = NEW_KARMA_THRESHOLD
    downvote_threshold: int = DOWNVOTE_THRESHOLD
    lowest_score: int = LOWEST_SCORE
    vote_window: int = VOTE_WINDOW
    downvote_ratio_limit: float = DOWNVOTE_RATIO_LIMIT

    @classmethod
    def from_settings(cls, settings) -> "VotePolicy":
        return cls(
            legit_threshold=settings.legit_threshold,
            new_age_threshold=settings.new_age_threshold,
            new_karma_threshold=settings.new_karma_threshold,
            downvote_threshold=settings.downvote_threshold,
            lowest_score=settings.lowest_score,
            vote_window=settings.vote_window,
            downvote_ratio_limit=settings.downvote_ratio_limit,
        )


DEFAULT_POLICY = VotePolicy()


class VoteValidation(BaseModel):
    """Outcome of validating a vote and how an accepted vote counts."""

    valid: bool
    reason: RejectReason | None = None
    counts_for_score: bool = False
    counts_for_karma: bool = False
    is_sockpuppet: bool = False

    @classmethod
    def reject(cls, reason: RejectReason) -> "VoteValidation":
        return cls(valid=False, reason=reason)


def _item_id(item: Item) -> int:
    if item.id is None:
        raise InvariantError("item has no id")
    return item.id


def is_legit_user(profile: Profile, is_editor: bool, policy: VotePolicy = DEFAULT_POLICY) -> bool:
    """Editors, or anyone with karma above the legit threshold."""
    return is_editor or profile.karma > policy.legit_threshold


def is_possible_sockpuppet(
    profile: Profile,
    now: int | None = None,
    policy: VotePolicy = DEFAULT_POLICY,
) -> bool:
    """Banned, manually downweighted, or both very new and very low karma."""
    if profile.ignore:
        return True
    if profile.weight < 0.5:
        return True
    return (
        user_age(profile, now) < policy.new_age_threshold
        and profile.karma < policy.new_karma_threshold
    )


def downvote_ratio(
    votes: list[ProfileVote],
    user_id: str,
    is_ignored: Callable[[str], bool] = lambda _: False,
    sample: int = 20,
) -> float:
    """Share of downvotes among the user's recent votes on other, unbanned authors."""
    considered = [v for v in votes if v.by != user_id and not is_ignored(v.by)][:sample]
    if not considered:
        return 0.0
    downs = sum(1 for v in considered if v.dir is VoteDirection.DOWN)
    return downs / len(considered)


def can_downvote(ratio: float, policy: VotePolicy = DEFAULT_POLICY) -> bool:
    return ratio <= policy.downvote_ratio_limit


def just_downvoted(
    recent_votes: list[ProfileVote], victim_id: str, n: int = KARMA_BOMB_RUN
) -> bool:
    """True when the last ``n`` votes were all downvotes on the same author."""
    if len(recent_votes) < n:
        return False
    return all(
        v.by == victim_id and v.dir is VoteDirection.DOWN for v in recent_votes[:n]
    )


def has_vote_from_ip(item: Item, ip: str) -> bool:
    return any(v.ip == ip for v in item.votes)


def validate_vote(
    user: Profile,
    item: Item,
    user_votes: UserVotesTable,
    direction: VoteDirection,
    ip: str,
    is_editor: bool,
    recent_votes: list[ProfileVote] | None = None,
    no_downs_key: bool = False,
    no_vote_key: bool = False,
    now: int | None = None,
    policy: VotePolicy = DEFAULT_POLICY,
) -> VoteValidation:
    """
    Decide whether a vote is allowed and how it should count.

    Checks run in a fixed order and the first failure is reported.
    ``recent_votes`` is the voter's own history, most recent first.
    """
    item_id = _item_id(item)
    voter_is_author = is_author(user.id, item)

    if item_id in user_votes:
        return VoteValidation.reject(RejectReason.ALREADY_VOTED)

    if not is_live(item) and not voter_is_author:
        return VoteValidation.reject(RejectReason.ITEM_DEAD)

    if (user.ignore or no_vote_key) and not voter_is_author:
        return VoteValidation.reject(RejectReason.VOTE_RESTRICTED)

    if direction is VoteDirection.DOWN and not is_editor:
        if no_downs_key:
            return VoteValidation.reject(RejectReason.DOWNVOTES_DISABLED)
        if item.by and just_downvoted(recent_votes or [], item.by):
            return VoteValidation.reject(RejectReason.KARMA_BOMBING)

    if (
        not is_legit_user(user, is_editor, policy)
        and not voter_is_author
        and has_vote_from_ip(item, ip)
    ):
        return VoteValidation.reject(RejectReason.DUPLICATE_IP)

    is_sockpuppet = direction is VoteDirection.UP and is_possible_sockpuppet(
        user, now, policy
    )
    return VoteValidation(
        valid=True,
        counts_for_score=True,
        counts_for_karma=counts_for_karma(user, item, ip, is_editor),
        is_sockpuppet=is_sockpuppet,
    )


def counts_for_karma(user: Profile, item: Item, ip: str, is_editor: bool) -> bool:
    """Self votes, same-IP votes by non-editors and poll option votes leave karma alone."""
    if is_author(user.id, item):
        return False
    if ip == item.ip and not is_editor:
        return False

    if item.type is ItemType.POLLOPT:
        return False
    elif item.type in (ItemType.STORY, ItemType.COMMENT, ItemType.POLL):
        return True
    else:
        raise ValueError(f"Unknown item type: {item.type}")


def can_vote(
    profile: Profile | None,
    item: Item,
    user_votes: UserVotesTable,
    direction: VoteDirection,
    parent_by: str | None = None,
    policy: VotePolicy = DEFAULT_POLICY,
) -> bool:
    """Whether to offer a vote control to this user at all."""
    if profile is None:
        return False
    if not is_live(item):
        return False
    if direction is VoteDirection.DOWN and item.score <= policy.lowest_score:
        return False
    if _item_id(item) in user_votes:
        return False

    if direction is VoteDirection.UP:
        return True

    if item.type is not ItemType.COMMENT:
        return False
    if profile.karma <= policy.downvote_threshold:
        return False
    # no downvoting replies to your own comments
    if parent_by is not None and parent_by == profile.id:
        return False
    return True


def apply_vote(
    item: Item,
    user: Profile,
    direction: VoteDirection,
    ip: str,
    validation: VoteValidation,
    is_admin: bool,
    now: int | None = None,
) -> ItemVote:
    """Apply an accepted vote to the item and return the stored record."""
    if not validation.valid:
        raise InvariantError(f"cannot apply rejected vote: {validation.reason}")
    _item_id(item)

    item.score += direction.delta

    if validation.is_sockpuppet:
        item.sockvotes += 1

    if is_admin and NOKILL_KEY not in item.keys:
        item.keys.append(NOKILL_KEY)

    vote = ItemVote(
        time=seconds() if now is None else now,
        ip=ip,
        user=user.id,
        dir=direction,
        score=item.score,
    )
    item.votes.insert(0, vote)
    return vote


def record_user_vote(
    user: Profile,
    user_votes: UserVotesTable,
    item: Item,
    direction: VoteDirection,
    now: int | None = None,
    vote_window: int = VOTE_WINDOW,
) -> None:
    """Add the vote to the voter's history and vote table."""
    item_id = _item_id(item)
    when = seconds() if now is None else now

    user.votes.insert(
        0,
        ProfileVote(
            time=when,
            id=item_id,
            by=item.by or "",
            sitename=sitename(item.url),
            dir=direction,
        ),
    )
    del user.votes[vote_window:]

    user_votes[item_id] = UserVote(dir=direction, time=when)


def apply_karma(author: Profile, direction: VoteDirection) -> None:
    author.karma += direction.delta


def should_rerank(item: Item) -> bool:
    """Votes on stories and polls move the frontpage."""
    return is_metastory(item)
