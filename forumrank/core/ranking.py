"""Deterministic ranking of stories, polls and comments."""

import re
from functools import lru_cache
from typing import Callable, Collection, Iterable, TypeVar

from .models import Item, ItemType, is_live, item_age

GRAVITY = 1.8
TIMEBASE = 120  # minutes
FRONT_THRESHOLD = 1
NOURL_FACTOR = 0.4
LIGHTWEIGHT_FACTOR = 0.3
COMMENT_FACTOR = 0.5
CONTROVERSY_FAMILY_MIN = 20

MULTI_TLD_COUNTRIES = frozenset({
    "uk", "jp", "au", "in", "ph", "tr", "za", "my", "nz", "br",
    "mx", "th", "sg", "id", "pk", "eg", "il", "at", "pl",
})

LONG_DOMAINS = frozenset({
    "blogspot", "wordpress", "livejournal", "blogs", "typepad",
    "weebly", "posterous", "blog-city", "supersized", "dreamhosters",
    "eurekster", "blogsome", "edogo", "blog", "com",
})

LIGHTWEIGHT_EXTENSIONS = (".png", ".jpg", ".jpeg")

_HOST_RE = re.compile(r"^https?://([^/?]+)")

T = TypeVar("T")


def real_score(item: Item) -> int:
    """Score with suspected sockpuppet upvotes removed."""
    return item.score - item.sockvotes


def is_blank(s: str | None) -> bool:
    return s is None or s.strip() == ""


def is_valid_url(url: str | None) -> bool:
    return bool(url) and (url.startswith("http://") or url.startswith("https://"))


def parse_site(url: str) -> list[str]:
    """Host labels of a URL in reverse order, e.g. ``["com", "example", "www"]``."""
    match = _HOST_RE.match(re.sub(r"\s", "", url))
    if not match:
        return []
    return match.group(1).split(".")[::-1]


@lru_cache(maxsize=4096)
def sitename(url: str | None) -> str | None:
    """
    Reduce a URL to the site it belongs to.

    ``http://www.example.com/a`` gives ``example.com``; hosts under a
    multi-level country TLD or a blog host keep a third label
    (``news.bbc.co.uk`` gives ``bbc.co.uk``).
    """
    if not is_valid_url(url):
        return None

    toks = parse_site(url)
    if not toks:
        return None

    t1 = toks[0]
    t2 = toks[1] if len(toks) > 1 else None
    t3 = toks[2] if len(toks) > 2 else None

    # numeric hosts are kept whole
    if t1[:1].isdigit():
        return ".".join(toks)

    if t3 and t3 != "www" and (t1 in MULTI_TLD_COUNTRIES or t2 in LONG_DOMAINS):
        return f"{t3}.{t2}.{t1}"

    if t2:
        return f"{t2}.{t1}"
    return None


def is_lightweight_url(url: str | None) -> bool:
    return bool(url) and url.lower().endswith(LIGHTWEIGHT_EXTENSIONS)


def is_lightweight(item: Item, lightweights: Collection[str] = ()) -> bool:
    """Low-effort stories: dead, rally or image tagged, a lightweight site, or an image URL."""
    if item.dead:
        return True
    if "rally" in item.keys:
        return True
    if "image" in item.keys:
        return True

    site = sitename(item.url)
    if site and site in lightweights:
        return True

    return is_lightweight_url(item.url)


def contro_factor(item: Item, visible_family: int) -> float:
    """Discount threads whose visible comment count dwarfs the score."""
    if visible_family > CONTROVERSY_FAMILY_MIN:
        return min(1.0, (real_score(item) / visible_family) ** 2)
    return 1.0


def content_factor(
    item: Item,
    lightweights: Collection[str] = (),
    visible_family: int = 0,
) -> float:
    """Multiplier for the item's kind of content."""
    if item.type in (ItemType.COMMENT, ItemType.POLLOPT):
        return COMMENT_FACTOR
    elif item.type in (ItemType.STORY, ItemType.POLL):
        if is_blank(item.url):
            return NOURL_FACTOR
        if is_lightweight(item, lightweights):
            return min(LIGHTWEIGHT_FACTOR, contro_factor(item, visible_family))
        return contro_factor(item, visible_family)
    else:
        raise ValueError(f"Unknown item type: {item.type}")


def frontpage_rank(
    item: Item,
    score_fn: Callable[[Item], float] = real_score,
    gravity: float = GRAVITY,
    lightweights: Collection[str] = (),
    visible_family: int = 0,
    now: int | None = None,
) -> float:
    """
    Compute the frontpage rank of an item.

    rank = base / ((age + 120) / 60) ** gravity * content_factor
    where base = (score - 1) ** 0.8 for positive bases, else score - 1.

    Age is read at call time, so ranks drift between calls.
    """
    base = score_fn(item) - 1
    if base > 0:
        base = base ** 0.8

    time_factor = ((item_age(item, now) + TIMEBASE) / 60) ** gravity

    return (base / time_factor) * content_factor(item, lightweights, visible_family)


def rank_by(items: Iterable[T], rank_fn: Callable[[T], float]) -> list[T]:
    """Sort by rank descending; equal ranks keep their input order."""
    return sorted(items, key=lambda x: -rank_fn(x))


def rank_newest(items: Iterable[Item]) -> list[Item]:
    """Rank by newest first; equal times keep input order."""
    return sorted(items, key=lambda i: -i.time)


def rank_best(items: Iterable[Item]) -> list[Item]:
    """Rank by real score."""
    return rank_by(items, real_score)


def compute_score(
    item: Item,
    algorithm: str,
    lightweights: Collection[str] = (),
    visible_family: int = 0,
    now: int | None = None,
    gravity: float = GRAVITY,
) -> float:
    """Compute the ranking score for a single item."""
    if algorithm == "frontpage":
        return frontpage_rank(
            item,
            gravity=gravity,
            lightweights=lightweights,
            visible_family=visible_family,
            now=now,
        )
    elif algorithm == "newest":
        return float(item.time)
    elif algorithm == "best":
        return float(real_score(item))
    else:
        raise ValueError(f"Unknown ranking algorithm: {algorithm}")


def rank_items(
    items: list[Item],
    algorithm: str,
    lightweights: Collection[str] = (),
    family_size: Callable[[Item], int] = lambda _: 0,
    now: int | None = None,
    gravity: float = GRAVITY,
) -> list[Item]:
    """Rank items using the specified algorithm."""
    if algorithm == "frontpage":
        return rank_by(
            items,
            lambda i: compute_score(i, algorithm, lightweights, family_size(i), now, gravity),
        )
    elif algorithm == "newest":
        return rank_newest(items)
    elif algorithm == "best":
        return rank_best(items)
    else:
        raise ValueError(f"Unknown ranking algorithm: {algorithm}")


def gen_topstories(
    stories: list[Item],
    rank_fn: Callable[[Item], float],
    consider: int = 1000,
    keep: int = 180,
) -> list[Item]:
    """Rank the newest ``consider`` live stories and keep the best ``keep``."""
    candidates = [s for s in stories[:consider] if is_live(s)]
    return rank_by(candidates, rank_fn)[:keep]


def best_n(items: Iterable[T], n: int, score_fn: Callable[[T], float]) -> list[T]:
    """Top ``n`` items by a score function."""
    return rank_by(items, score_fn)[:n]


def retrieve(items: Iterable[T], n: int, test: Callable[[T], bool]) -> list[T]:
    """First ``n`` items that pass a test."""
    result: list[T] = []
    for item in items:
        if test(item):
            result.append(item)
            if len(result) >= n:
                break
    return result


RANKING_VERSION = "v1.0"
