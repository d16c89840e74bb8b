"""Tests for frontpage rank and ranking helpers."""

import pytest

from forumrank.core.models import Item, ItemType
from forumrank.core.ranking import (
    best_n,
    compute_score,
    contro_factor,
    content_factor,
    frontpage_rank,
    gen_topstories,
    is_lightweight,
    rank_by,
    rank_items,
    real_score,
    retrieve,
    sitename,
)

NOW = 1_700_000_000


def story(score=10, age_minutes=60, url="http://example.com/a", item_id=1, **kw):
    return Item(
        id=item_id,
        type=kw.pop("type", ItemType.STORY),
        by="alice",
        time=NOW - age_minutes * 60,
        url=url,
        score=score,
        **kw,
    )


class TestFrontpageRank:
    """Tests for the frontpage rank formula."""

    def test_exact_value(self):
        """Score 2 at age 0 gives 1 / 2 ** 1.8."""
        item = story(score=2, age_minutes=0)
        assert frontpage_rank(item, now=NOW) == pytest.approx(1 / 2 ** 1.8)

    def test_sublinear_base(self):
        """Bases above zero are raised to 0.8."""
        item = story(score=11, age_minutes=0)
        assert frontpage_rank(item, now=NOW) == pytest.approx(10 ** 0.8 / 2 ** 1.8)

    def test_nonpositive_base_left_alone(self):
        """Zero and negative bases are not raised to a fractional power."""
        assert frontpage_rank(story(score=1), now=NOW) == 0
        assert frontpage_rank(story(score=-2, age_minutes=0), now=NOW) == pytest.approx(
            -3 / 2 ** 1.8
        )

    def test_higher_score_ranks_higher(self):
        """Score 20 outranks score 10 at equal age."""
        assert frontpage_rank(story(score=20), now=NOW) > frontpage_rank(story(score=10), now=NOW)

    def test_younger_ranks_higher(self):
        """Age 60 minutes outranks age 3600 minutes at equal score."""
        young = story(age_minutes=60)
        old = story(age_minutes=3600)
        assert frontpage_rank(young, now=NOW) > frontpage_rank(old, now=NOW)

    def test_gravity_parameter(self):
        """Lower gravity decays old items less."""
        item = story(age_minutes=600)
        assert frontpage_rank(item, gravity=1.2, now=NOW) > frontpage_rank(item, now=NOW)

    def test_content_type_ordering(self):
        """No-URL story < comment < URL story at matched score and age."""
        url_story = story()
        no_url_story = story(url=None)
        comment = story(url=None, type=ItemType.COMMENT)

        assert (
            frontpage_rank(no_url_story, now=NOW)
            < frontpage_rank(comment, now=NOW)
            < frontpage_rank(url_story, now=NOW)
        )

    def test_sockvotes_excluded(self):
        """Sockpuppet upvotes do not count toward rank."""
        clean = story(score=10)
        socked = story(score=10, sockvotes=4)
        assert real_score(socked) == 6
        assert frontpage_rank(socked, now=NOW) < frontpage_rank(clean, now=NOW)

    def test_custom_score_fn(self):
        """A raw score function ignores sockvotes."""
        item = story(score=10, sockvotes=4)
        assert frontpage_rank(item, score_fn=lambda i: i.score, now=NOW) == pytest.approx(
            frontpage_rank(story(score=10), now=NOW)
        )


class TestContentFactor:
    """Tests for content and controversy factors."""

    def test_controversy_factor(self):
        """Large families relative to score are discounted, capped at 1."""
        assert contro_factor(story(score=10), 50) == pytest.approx(0.04)
        assert contro_factor(story(score=100), 25) == 1
        assert contro_factor(story(score=1), 20) == 1

    def test_comment_and_pollopt_factor(self):
        assert content_factor(story(type=ItemType.COMMENT)) == 0.5
        assert content_factor(story(type=ItemType.POLLOPT)) == 0.5

    def test_no_url_factor(self):
        assert content_factor(story(url="   ")) == 0.4
        assert content_factor(story(url=None, type=ItemType.POLL)) == 0.4

    def test_lightweight_capped(self):
        """Lightweight stories get at most 0.3, less if controversial."""
        image = story(url="http://example.com/cat.JPG")
        assert content_factor(image) == 0.3
        assert content_factor(image, visible_family=50) == pytest.approx(0.04)

    def test_lightweight_classification(self):
        """Dead, rally, image, lightweight site and image URL all count."""
        assert is_lightweight(story(dead=True))
        assert is_lightweight(story(keys=["rally"]))
        assert is_lightweight(story(keys=["image"]))
        assert is_lightweight(story(url="http://i.imgur.com/x"), {"imgur.com"})
        assert is_lightweight(story(url="http://example.com/x.png"))
        assert not is_lightweight(story())


class TestSitename:
    """Tests for URL to site reduction."""

    def test_plain_domain(self):
        assert sitename("http://www.example.com/path?q=1") == "example.com"

    def test_multi_tld_country(self):
        assert sitename("https://news.bbc.co.uk/story") == "bbc.co.uk"

    def test_long_domain(self):
        assert sitename("http://someone.blogspot.com/post") == "someone.blogspot.com"

    def test_www_not_kept(self):
        assert sitename("http://www.co.uk/") == "co.uk"

    def test_invalid(self):
        assert sitename(None) is None
        assert sitename("ftp://example.com") is None
        assert sitename("http://localhost") is None


class TestRankingHelpers:
    """Tests for sorting helpers."""

    def test_ties_keep_input_order(self):
        """Equal ranks preserve insertion order."""
        items = [story(item_id=i) for i in range(1, 6)]
        ranked = rank_by(items, lambda i: frontpage_rank(i, now=NOW))
        assert [i.id for i in ranked] == [1, 2, 3, 4, 5]

    def test_rank_items_algorithms(self):
        a = story(item_id=1, score=5, age_minutes=10)
        b = story(item_id=2, score=50, age_minutes=5000)
        c = story(item_id=3, score=20, age_minutes=1)

        assert [i.id for i in rank_items([a, b, c], "newest", now=NOW)] == [3, 1, 2]
        assert [i.id for i in rank_items([a, b, c], "best", now=NOW)] == [2, 3, 1]
        assert [i.id for i in rank_items([a, b, c], "frontpage", now=NOW)][0] == 3

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            rank_items([], "hot")
        with pytest.raises(ValueError):
            compute_score(story(), "hot")

    def test_compute_score_matches_rank(self):
        item = story()
        assert compute_score(item, "frontpage", now=NOW) == frontpage_rank(item, now=NOW)
        assert compute_score(item, "best") == 10.0

    def test_gen_topstories(self):
        """Dead stories are dropped, only the newest candidates are considered."""
        stories = [
            story(item_id=1, score=5),
            story(item_id=2, score=50, dead=True),
            story(item_id=3, score=30),
            story(item_id=4, score=100),
        ]
        top = gen_topstories(stories, lambda s: frontpage_rank(s, now=NOW), consider=3, keep=2)
        assert [s.id for s in top] == [3, 1]

    def test_best_n_and_retrieve(self):
        items = [story(item_id=i, score=i) for i in range(1, 6)]
        assert [i.id for i in best_n(items, 2, real_score)] == [5, 4]
        assert [i.id for i in retrieve(items, 2, lambda i: i.score % 2 == 1)] == [1, 3]

    def test_future_item_ranks_as_brand_new(self):
        """Items stamped ahead of the clock count as age zero."""
        skewed = story(age_minutes=-180, item_id=2)
        fresh = story(age_minutes=0)
        assert frontpage_rank(skewed, now=NOW) == frontpage_rank(fresh, now=NOW)
        assert isinstance(frontpage_rank(skewed, now=NOW), float)
        older = story(age_minutes=600, item_id=3)
        ranked = rank_by([older, skewed, fresh], lambda s: frontpage_rank(s, now=NOW))
        assert [s.id for s in ranked] == [2, 1, 3]
