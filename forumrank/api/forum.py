"""API-shaped in-process entry points for ranking and voting.

Every state change goes through ``ForumEngine``'s lock, so at most one
mutation is in flight and reads never observe a half-applied vote.
"""

import logging
import threading

from pydantic import BaseModel

from forumrank.core.comments import order_subtree
from forumrank.core.errors import InvariantError, NotFoundError, PersistenceError
from forumrank.core.events import Event, EventType, VotePayload, VoteStatus
from forumrank.core.models import (
    Item,
    ItemType,
    Profile,
    UserVotesTable,
    VoteDirection,
    has_key,
    is_live,
    is_metastory,
    seconds,
)
from forumrank.core.procrast import check_procrast
from forumrank.core.projections import link_to_parent
from forumrank.core.ranking import (
    FRONT_THRESHOLD,
    RANKING_VERSION,
    compute_score,
    gen_topstories,
    rank_items,
    real_score,
)
from forumrank.core.settings import Settings, get_settings
from forumrank.core.store import Store, dump_json
from forumrank.core.visibility import Viewer, can_see, visible_family_size
from forumrank.core.voting import (
    NODOWNS_KEY,
    NOVOTE_KEY,
    RejectReason,
    VotePolicy,
    VoteValidation,
    apply_karma,
    apply_vote,
    can_downvote,
    can_vote,
    downvote_ratio,
    record_user_vote,
    should_rerank,
    validate_vote,
)

logger = logging.getLogger(__name__)

ITEM_FIELDS = {"dead", "deleted", "keys", "flags", "title", "text", "url"}
PROFILE_FIELDS = {
    "name", "auth", "weight", "ignore", "showdead", "noprocrast",
    "maxvisit", "minaway", "keys", "delay",
}


class VoteContext(BaseModel):
    """Optional overrides for a vote request."""

    now: int | None = None
    is_editor: bool | None = None
    is_admin: bool | None = None


class VoteResult(BaseModel):
    """Response from submit_vote()."""

    accepted: bool
    reason: str | None = None
    score: int | None = None
    event_id: str | None = None


class ForumEngine:
    """Ranking and vote integrity over an injected store."""

    def __init__(self, store: Store, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()
        self.policy = VotePolicy.from_settings(self.settings)
        self.lightweights: set[str] = set(self.settings.lightweight_sites)
        self._lock = threading.RLock()
        self._topstories: list[Item] | None = None

    # Roles

    def is_admin(self, user_id: str | None) -> bool:
        return user_id is not None and user_id in self.settings.admins

    def is_editor(self, profile: Profile | None) -> bool:
        if profile is None:
            return False
        return self.is_admin(profile.id) or profile.auth > 0

    # Profiles

    def create_profile(self, user_id: str, now: int | None = None, **fields) -> Profile:
        """Create a profile, or return the existing one."""
        with self._lock:
            existing = self.store.get_profile(user_id)
            if existing is not None:
                return existing

            profile = Profile(id=user_id, created=seconds() if now is None else now, **fields)
            with self.store.atomic():
                self.store.persist_profile(profile)
                self.store.append_event(Event(
                    event_type=EventType.PROFILE_CREATED,
                    time=profile.created,
                    actor_id=user_id,
                    payload={"profile": dump_json(profile)},
                ))
            logger.info("Created profile %s", user_id)
            return profile

    def update_profile(self, user_id: str, now: int | None = None, **fields) -> Profile:
        """Change moderation or preference fields on a profile."""
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update profile fields: {sorted(unknown)}")

        with self._lock:
            profile = self.store.get_profile(user_id)
            if profile is None:
                raise NotFoundError(f"no such user: {user_id}")
            for name, value in fields.items():
                setattr(profile, name, value)
            self._save_profile(profile, now)
            return profile

    def _save_profile(self, profile: Profile, now: int | None) -> None:
        with self.store.atomic():
            self.store.persist_profile(profile)
            self.store.append_event(Event(
                event_type=EventType.PROFILE_UPDATED,
                time=seconds() if now is None else now,
                actor_id=profile.id,
                payload={"profile": dump_json(profile)},
            ))

    # Items

    def submit_item(
        self,
        author_id: str,
        item_type: ItemType | str,
        ip: str,
        url: str | None = None,
        title: str | None = None,
        text: str | None = None,
        parent_id: int | None = None,
        now: int | None = None,
    ) -> Item:
        """
        Create an item and cast its author's upvote.

        Comments are attached to their parent's kids and poll options to
        their poll's parts.
        """
        item_type = ItemType(item_type)
        if now is None:
            now = seconds()

        with self._lock:
            author = self.store.get_profile(author_id)
            if author is None:
                raise NotFoundError(f"no such user: {author_id}")
            if parent_id is not None and self.store.get_item(parent_id) is None:
                raise NotFoundError(f"no such item: {parent_id}")

            item = Item(
                id=self.store.next_item_id(),
                type=item_type,
                by=author_id,
                ip=ip,
                time=now,
                url=url,
                title=title,
                text=text,
                parent=parent_id,
            )
            with self.store.atomic():
                self.store.append_event(Event(
                    event_type=EventType.ITEM_CREATED,
                    time=now,
                    actor_id=author_id,
                    item_id=item.id,
                    payload={"item": dump_json(item)},
                ))
                self.store.persist_item(item)
                parent = link_to_parent(self.store, item)
                if parent is not None:
                    self.store.persist_item(parent)

            result = self._cast_vote(
                author, item, VoteDirection.UP, ip, VoteContext(now=now), now, check_controls=False
            )
            if not result.accepted:
                raise InvariantError(f"author vote on new item rejected: {result.reason}")

            logger.info("Created %s %d by %s", item.type.value, item.id, author_id)
            return item

    def update_item(self, item_id: int, now: int | None = None, **fields) -> Item:
        """Moderate an item: kill, delete, retag or edit."""
        unknown = set(fields) - ITEM_FIELDS
        if unknown:
            raise ValueError(f"Cannot update item fields: {sorted(unknown)}")

        with self._lock:
            item = self.store.get_item(item_id)
            if item is None:
                raise NotFoundError(f"no such item: {item_id}")
            for name, value in fields.items():
                setattr(item, name, value)

            with self.store.atomic():
                self.store.persist_item(item)
                self.store.append_event(Event(
                    event_type=EventType.ITEM_UPDATED,
                    time=seconds() if now is None else now,
                    item_id=item_id,
                    payload={"item": dump_json(item)},
                ))
            if is_metastory(item):
                self._topstories = None
            return item

    # Visibility

    def viewer(self, viewer_id: str | None) -> Viewer:
        profile = self.store.get_profile(viewer_id) if viewer_id else None
        return Viewer.from_profile(
            profile, is_admin=self.is_admin(viewer_id), is_editor=self.is_editor(profile)
        )

    def author_delay(self, author_id: str | None) -> int:
        author = self.store.get_profile(author_id) if author_id else None
        return author.delay if author is not None else 0

    def can_see(self, viewer: Viewer, item: Item, now: int | None = None) -> bool:
        # writes store.matured
        with self._lock:
            return can_see(
                viewer.user_id,
                item,
                viewer.is_admin,
                viewer.sees_dead,
                self.author_delay(item.by),
                self.store.matured,
                now,
                self.settings.max_delay,
            )

    def visible_family_size(
        self, item: Item, viewer: Viewer | None = None, now: int | None = None
    ) -> int:
        viewer = viewer or Viewer()
        with self._lock:
            return visible_family_size(
                item, self.store.get_item, lambda i: self.can_see(viewer, i, now)
            )

    # Ranking

    def _family_size(self, item: Item, now: int | None) -> int:
        """Controversy input: what an anonymous reader sees under a story or poll."""
        return self.visible_family_size(item, now=now) if is_metastory(item) else 0

    def rank(
        self,
        item: Item,
        lightweights: set[str] | None = None,
        now: int | None = None,
    ) -> float:
        """Frontpage rank of a single item."""
        with self._lock:
            return compute_score(
                item,
                "frontpage",
                self.lightweights if lightweights is None else lightweights,
                self._family_size(item, now),
                now,
                self.settings.gravity,
            )

    def rank_items_for_frontpage(
        self,
        candidates: list[Item],
        lightweights: set[str] | None = None,
        now: int | None = None,
        algorithm: str = "frontpage",
    ) -> list[Item]:
        """Order candidate items, best first; ties keep input order."""
        with self._lock:
            return rank_items(
                candidates,
                algorithm,
                self.lightweights if lightweights is None else lightweights,
                lambda i: self._family_size(i, now),
                now,
                self.settings.gravity,
            )

    def stories(
        self, viewer_id: str | None = None, algorithm: str = "newest", now: int | None = None
    ) -> list[Item]:
        """Live stories and polls the viewer can see, ordered by ``algorithm``."""
        with self._lock:
            viewer = self.viewer(viewer_id)
            candidates = [
                i
                for i in self.store.items_newest_first()
                if is_metastory(i) and is_live(i) and self.can_see(viewer, i, now)
            ]
            return self.rank_items_for_frontpage(candidates, now=now, algorithm=algorithm)

    def order_comments_for_display(
        self, root: Item, viewer_id: str | None = None, now: int | None = None
    ) -> list[tuple[Item, int]]:
        """Replies under ``root`` in display order, paired with their depth."""
        with self._lock:
            viewer = self.viewer(viewer_id)
            return order_subtree(
                root,
                self.store.get_item,
                lambda i: self.rank(i, now=now),
                lambda i: self.can_see(viewer, i, now),
            )

    def gen_topstories(self, now: int | None = None) -> list[Item]:
        """Recompute the cached frontpage ranking."""
        with self._lock:
            stories = [i for i in self.store.items_newest_first() if is_metastory(i)]
            self._topstories = gen_topstories(
                stories,
                lambda s: self.rank(s, now=now),
                consider=self.settings.topstories_consider,
                keep=self.settings.topstories_keep,
            )
            return self._topstories

    def frontpage(self, viewer_id: str | None = None, now: int | None = None) -> list[Item] | None:
        """
        Stories for the front page as seen by a viewer.

        Returns None when the viewer is locked out by noprocrast.
        """
        with self._lock:
            if not self._procrast_allows(viewer_id, now):
                return None
            if self._topstories is None:
                self.gen_topstories(now)

            viewer = self.viewer(viewer_id)
            return [
                s
                for s in self._topstories
                if real_score(s) >= FRONT_THRESHOLD and is_live(s) and self.can_see(viewer, s, now)
            ][: self.settings.maxend]

    def _procrast_allows(self, user_id: str | None, now: int | None) -> bool:
        profile = self.store.get_profile(user_id) if user_id else None
        if profile is None or not profile.noprocrast:
            return True
        allowed = check_procrast(profile, now)
        if allowed:
            self._save_profile(profile, now)
        return allowed

    # Voting

    def can_vote(self, viewer_id: str | None, item: Item, direction: VoteDirection | str) -> bool:
        """Whether to show a vote control for this item to this viewer."""
        with self._lock:
            profile = self.store.get_profile(viewer_id) if viewer_id else None
            user_votes = self.store.get_user_votes(viewer_id) if profile else {}
            return can_vote(
                profile,
                item,
                user_votes,
                VoteDirection(direction),
                self._parent_author(item),
                self.policy,
            )

    def _parent_author(self, item: Item) -> str | None:
        parent = self.store.get_item(item.parent) if item.parent is not None else None
        return parent.by if parent is not None else None

    def _downvote_control_shown(
        self, voter: Profile, item: Item, user_votes: UserVotesTable
    ) -> bool:
        return can_vote(
            voter, item, user_votes, VoteDirection.DOWN, self._parent_author(item), self.policy
        )

    def submit_vote(
        self,
        voter_id: str,
        item_id: int,
        direction: VoteDirection | str,
        ip: str,
        context: VoteContext | None = None,
    ) -> VoteResult:
        """
        Validate a vote and, if legal, apply and persist it.

        Rejections are returned, never raised. A PersistenceError means
        the vote may be applied in memory but not on disk.
        """
        context = context or VoteContext()
        direction = VoteDirection(direction)
        now = seconds() if context.now is None else context.now

        with self._lock:
            voter = self.store.get_profile(voter_id)
            item = self.store.get_item(item_id)
            if voter is None or item is None:
                logger.debug("Vote by %s on %s: not found", voter_id, item_id)
                return VoteResult(accepted=False, reason=RejectReason.NOT_FOUND.value)

            if not self._procrast_allows(voter_id, now):
                return self._reject(voter, item, direction, ip, now, RejectReason.PROCRASTINATING)

            return self._cast_vote(voter, item, direction, ip, context, now)

    def _cast_vote(
        self,
        voter: Profile,
        item: Item,
        direction: VoteDirection,
        ip: str,
        context: VoteContext,
        now: int,
        check_controls: bool = True,
    ) -> VoteResult:
        is_admin = self.is_admin(voter.id) if context.is_admin is None else context.is_admin
        is_editor = (
            (is_admin or self.is_editor(voter)) if context.is_editor is None else context.is_editor
        )
        user_votes = self.store.get_user_votes(voter.id)

        validation = validate_vote(
            voter,
            item,
            user_votes,
            direction,
            ip,
            is_editor,
            recent_votes=voter.votes,
            no_downs_key=has_key(voter, NODOWNS_KEY),
            no_vote_key=has_key(voter, NOVOTE_KEY),
            now=now,
            policy=self.policy,
        )
        if (
            validation.valid
            and self.settings.enforce_downvote_ratio
            and direction is VoteDirection.DOWN
            and not is_editor
        ):
            ratio = downvote_ratio(voter.votes, voter.id, self._is_ignored)
            if not can_downvote(ratio, self.policy):
                validation = VoteValidation.reject(RejectReason.DOWNVOTE_RATIO)

        if (
            validation.valid
            and check_controls
            and direction is VoteDirection.DOWN
            and not self._downvote_control_shown(voter, item, user_votes)
        ):
            validation = VoteValidation.reject(RejectReason.DOWNVOTE_NOT_ALLOWED)

        if not validation.valid:
            return self._reject(voter, item, direction, ip, now, validation.reason)

        author = self.store.get_profile(item.by) if item.by else None
        karma_changed = validation.counts_for_karma and author is not None

        saved_item = item.model_copy(deep=True)
        saved_profiles = [p.model_copy(deep=True) for p in (voter, author) if p is not None]
        saved_votes = dict(user_votes)

        try:
            with self.store.atomic():
                apply_vote(item, voter, direction, ip, validation, is_admin, now)
                record_user_vote(voter, user_votes, item, direction, now, self.settings.vote_window)
                if karma_changed:
                    apply_karma(author, direction)

                self.store.persist_item(item)
                self.store.persist_profile(voter)
                self.store.persist_user_votes(voter.id, user_votes)
                if karma_changed:
                    self.store.persist_profile(author)

                event = Event(
                    event_type=EventType.VOTE,
                    time=now,
                    actor_id=voter.id,
                    item_id=item.id,
                    status=VoteStatus.ACCEPTED,
                    ranking_version=RANKING_VERSION,
                    payload=VotePayload(
                        direction=direction,
                        ip=ip,
                        is_sockpuppet=validation.is_sockpuppet,
                        counts_for_karma=karma_changed,
                        is_admin=is_admin,
                        author_id=item.by,
                    ).model_dump(mode="json"),
                )
                self.store.append_event(event)
        except PersistenceError:
            # memory must not hold a vote the event log lacks
            self.store.restore([saved_item], saved_profiles, {voter.id: saved_votes})
            self._topstories = None
            logger.error("Vote by %s on %d not persisted; in-memory state restored", voter.id, item.id)
            raise

        if should_rerank(item):
            self.gen_topstories(now)

        logger.info(
            "Vote %s by %s on %d accepted (score %d)", direction.value, voter.id, item.id, item.score
        )
        return VoteResult(accepted=True, score=item.score, event_id=event.event_id)

    def _reject(
        self,
        voter: Profile,
        item: Item,
        direction: VoteDirection,
        ip: str,
        now: int,
        reason: RejectReason,
    ) -> VoteResult:
        logger.debug("Vote %s by %s on %s rejected: %s", direction.value, voter.id, item.id, reason.value)
        with self.store.atomic():
            self.store.append_event(Event(
                event_type=EventType.VOTE,
                time=now,
                actor_id=voter.id,
                item_id=item.id,
                status=VoteStatus.REJECTED,
                ranking_version=RANKING_VERSION,
                payload=VotePayload(
                    direction=direction, ip=ip, reason=reason.value
                ).model_dump(mode="json"),
            ))
        return VoteResult(accepted=False, reason=reason.value, score=item.score)

    def _is_ignored(self, user_id: str) -> bool:
        profile = self.store.get_profile(user_id)
        return profile is not None and profile.ignore
