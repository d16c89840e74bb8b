"""Display ordering for comment threads."""

from typing import Callable

from .models import Item, is_live
from .ranking import rank_by
from .visibility import ItemLookup


def order_subtree(
    item: Item,
    get_item: ItemLookup,
    rank_fn: Callable[[Item], float],
    can_see_item: Callable[[Item], bool] = lambda _: True,
    depth: int = 0,
    _seen: set[int] | None = None,
) -> list[tuple[Item, int]]:
    """
    Flatten the replies under an item into display order.

    Direct replies come out at ``depth``, each followed by its own replies
    at ``depth + 1``. Siblings are sorted by rank, best first, with ties
    left in ``kids`` order. Dead, deleted and invisible replies are
    dropped together with everything beneath them.
    """
    if _seen is None:
        _seen = set()
    if item.id is not None:
        _seen.add(item.id)

    kids: list[Item] = []
    for kid_id in item.kids:
        if kid_id in _seen:
            continue
        kid = get_item(kid_id)
        if kid is not None and is_live(kid) and can_see_item(kid):
            kids.append(kid)

    ordered: list[tuple[Item, int]] = []
    for kid in rank_by(kids, rank_fn):
        if kid.id is not None and kid.id in _seen:
            continue
        ordered.append((kid, depth))
        ordered.extend(
            order_subtree(kid, get_item, rank_fn, can_see_item, depth + 1, _seen)
        )
    return ordered
