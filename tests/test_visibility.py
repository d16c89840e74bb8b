"""Tests for per-viewer visibility and family counting."""

from forumrank.core.models import Item, ItemType, Profile
from forumrank.core.visibility import (
    Viewer,
    can_see,
    family,
    filter_visible,
    is_delayed,
    sees_dead,
    visible_family_size,
)

NOW = 1_700_000_000


def comment(item_id, age_minutes=60, by="alice", **kw):
    return Item(
        id=item_id,
        type=ItemType.COMMENT,
        by=by,
        time=NOW - age_minutes * 60,
        score=1,
        **kw,
    )


def lookup(*items):
    table = {i.id: i for i in items}
    return table.get


class TestCanSee:
    """Tests for the single-item visibility rules."""

    def test_live_item_visible_to_everyone(self):
        item = comment(1)
        assert can_see(None, item, False, False, now=NOW)
        assert can_see("bob", item, False, False, now=NOW)

    def test_deleted_only_admin(self):
        """Deleted beats every other rule, including authorship."""
        item = comment(1, deleted=True)
        assert not can_see("alice", item, False, True, now=NOW)
        assert not can_see("bob", item, False, True, now=NOW)
        assert can_see("root", item, True, False, now=NOW)

    def test_dead_visible_to_author_and_showdead(self):
        item = comment(1, dead=True)
        assert can_see("alice", item, False, False, now=NOW)
        assert can_see("bob", item, False, True, now=NOW)
        assert not can_see("bob", item, False, False, now=NOW)
        assert not can_see(None, item, False, False, now=NOW)

    def test_sees_dead_preference(self):
        """Showdead only counts for users who are not banned; editors always see."""
        assert sees_dead(Profile(id="bob", showdead=True), False)
        assert not sees_dead(Profile(id="bob", showdead=True, ignore=True), False)
        assert not sees_dead(Profile(id="bob"), False)
        assert sees_dead(Profile(id="ed"), True)
        assert not sees_dead(None, False)

    def test_viewer_from_profile(self):
        viewer = Viewer.from_profile(Profile(id="bob", showdead=True))
        assert viewer == Viewer(user_id="bob", is_admin=False, sees_dead=True)
        assert Viewer.from_profile(None) == Viewer()


class TestDelay:
    """Tests for delayed comments and the one-way maturity transition."""

    def test_delayed_comment_only_author(self):
        item = comment(1, age_minutes=2)
        matured: set[int] = set()
        assert not can_see("bob", item, False, False, 5, matured, now=NOW)
        assert can_see("alice", item, False, False, 5, matured, now=NOW)
        assert 1 not in matured

    def test_matures_once_old_enough(self):
        """After maturing an item is never delayed again."""
        item = comment(1, age_minutes=6)
        matured: set[int] = set()
        assert can_see("bob", item, False, False, 5, matured, now=NOW)
        assert matured == {1}

        # looking at it "earlier" no longer hides it
        assert can_see("bob", item, False, False, 5, matured, now=NOW - 5 * 60)

    def test_delay_capped_by_max_delay(self):
        item = comment(1, age_minutes=11)
        assert not is_delayed(item, 60, set(), now=NOW)
        assert is_delayed(item, 60, set(), now=NOW, max_delay=30)

    def test_stories_never_delayed(self):
        item = Item(id=1, type=ItemType.STORY, by="alice", time=NOW)
        matured: set[int] = set()
        assert not is_delayed(item, 10, matured, now=NOW)
        assert matured == set()

    def test_zero_delay_matures_immediately(self):
        matured: set[int] = set()
        assert not is_delayed(comment(7, age_minutes=0), 0, matured, now=NOW)
        assert matured == {7}

    def test_filter_visible(self):
        items = [comment(1), comment(2, dead=True), comment(3, deleted=True)]
        visible = filter_visible(items, Viewer(user_id="bob"), now=NOW)
        assert [i.id for i in visible] == [1]


class TestVisibleFamily:
    """Tests for counting visible descendants."""

    def test_counts_visible_descendants(self):
        root = Item(id=1, type=ItemType.STORY, by="alice", time=NOW, kids=[2, 3])
        c2 = comment(2, kids=[4])
        c3 = comment(3, dead=True)
        c4 = comment(4)
        get = lookup(root, c2, c3, c4)

        count = visible_family_size(root, get, lambda i: can_see("bob", i, False, False, now=NOW))
        assert count == 3

    def test_dead_parent_still_walks_children(self):
        """Invisible items contribute 0 but their kids are still counted."""
        root = comment(1, dead=True, kids=[2])
        get = lookup(root, comment(2))
        assert visible_family_size(root, get, lambda i: not i.dead) == 1

    def test_missing_kids_skipped(self):
        root = comment(1, kids=[2, 99])
        get = lookup(root, comment(2))
        assert visible_family_size(root, get, lambda i: True) == 2

    def test_cycle_terminates(self):
        a = comment(1, kids=[2])
        b = comment(2, kids=[1])
        get = lookup(a, b)
        assert visible_family_size(a, get, lambda i: True) == 2

    def test_family_depth_first(self):
        root = comment(1, kids=[2, 3])
        get = lookup(root, comment(2, kids=[4]), comment(3), comment(4))
        assert [i.id for i in family(root, get)] == [1, 2, 4, 3]
