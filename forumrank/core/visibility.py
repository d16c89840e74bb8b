"""Per-viewer visibility rules for items and their descendants."""

from dataclasses import dataclass
from typing import Callable

from .models import Item, ItemType, Profile, is_author, item_age

MAX_DELAY = 10  # minutes

ItemLookup = Callable[[int], Item | None]


@dataclass(frozen=True)
class Viewer:
    """Who is looking, and what they are allowed to see."""

    user_id: str | None = None
    is_admin: bool = False
    sees_dead: bool = False

    @classmethod
    def from_profile(
        cls, profile: Profile | None, is_admin: bool = False, is_editor: bool = False
    ) -> "Viewer":
        if profile is None:
            return cls()
        return cls(
            user_id=profile.id,
            is_admin=is_admin,
            sees_dead=sees_dead(profile, is_editor or is_admin),
        )


def sees_dead(profile: Profile | None, is_editor: bool) -> bool:
    """Editors always see dead items; others need showdead and no ban."""
    if is_editor:
        return True
    return profile is not None and profile.showdead and not profile.ignore


def is_delayed(
    item: Item,
    author_delay: int,
    matured: set[int],
    now: int | None = None,
    max_delay: int = MAX_DELAY,
) -> bool:
    """
    Check whether a fresh comment is still held back by its author's delay.

    Once a comment is old enough its id goes into ``matured`` and it is
    never considered delayed again, whatever its age.
    """
    if item.id is None or item.id in matured:
        return False
    if item.type is not ItemType.COMMENT:
        return False

    if item_age(item, now) < min(max_delay, author_delay):
        return True

    matured.add(item.id)
    return False


def can_see(
    viewer_id: str | None,
    item: Item,
    is_admin: bool,
    viewer_sees_dead: bool,
    author_delay: int = 0,
    matured: set[int] | None = None,
    now: int | None = None,
    max_delay: int = MAX_DELAY,
) -> bool:
    """Decide whether a viewer may see a single item. First rule that applies wins."""
    if item.deleted:
        return is_admin

    if item.dead:
        return is_author(viewer_id, item) or viewer_sees_dead or is_admin

    if matured is None:
        matured = set()
    if is_delayed(item, author_delay, matured, now, max_delay):
        return is_author(viewer_id, item)

    return True


def filter_visible(
    items: list[Item],
    viewer: Viewer,
    author_delay: Callable[[str | None], int] = lambda _: 0,
    matured: set[int] | None = None,
    now: int | None = None,
) -> list[Item]:
    """Keep the items a viewer can see, preserving order."""
    if matured is None:
        matured = set()
    return [
        item
        for item in items
        if can_see(
            viewer.user_id,
            item,
            viewer.is_admin,
            viewer.sees_dead,
            author_delay(item.by),
            matured,
            now,
        )
    ]


def visible_family_size(
    item: Item,
    get_item: ItemLookup,
    can_see_item: Callable[[Item], bool],
    _seen: set[int] | None = None,
) -> int:
    """
    Count an item plus all of its descendants that the viewer can see.

    Kids that no longer resolve are skipped. A kid already counted on this
    walk is not counted again, so a malformed parent chain terminates.
    """
    if _seen is None:
        _seen = set()
    if item.id is not None:
        _seen.add(item.id)

    count = 1 if can_see_item(item) else 0
    for kid_id in item.kids:
        if kid_id in _seen:
            continue
        kid = get_item(kid_id)
        if kid is not None:
            count += visible_family_size(kid, get_item, can_see_item, _seen)
    return count


def family(item: Item, get_item: ItemLookup) -> list[Item]:
    """Return the item followed by all of its descendants, depth first."""
    result: list[Item] = []
    seen: set[int] = set()
    stack = [item]
    while stack:
        current = stack.pop()
        if current.id is not None:
            if current.id in seen:
                continue
            seen.add(current.id)
        result.append(current)
        kids = [get_item(kid_id) for kid_id in current.kids]
        stack.extend(kid for kid in reversed(kids) if kid is not None)
    return result
