"""Interview queue ordering.

The default ordering puts the items most likely to be culled first:

1. Items added within the last year are left out entirely (grace period)
2. Expansions of an owned item are deferred to the end, alphabetically
3. Never-played items, oldest acquisition first
4. Items not played in three years, lowest rated first
5. Everything else, least recently played first
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime

from shelfwise.storage.models import ExpansionLink, Item, SortMode

_GRACE_YEARS = 1
_STALE_YEARS = 3
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _years_ago(now: datetime, years: int) -> datetime:
    try:
        return now.replace(year=now.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return now.replace(year=now.year - years, day=28)


def _name_key(item: Item) -> tuple[str, int]:
    return (item.name.casefold(), item.item_id)


def _rating(item: Item) -> float:
    return item.user_rating if item.user_rating is not None else 0.0


def is_recent(item: Item, now: datetime) -> bool:
    """True when the item was added inside the grace period."""
    if item.date_added is None:
        return False
    return _aware(item.date_added) >= _years_ago(_aware(now), _GRACE_YEARS)


def recent_items(items: Iterable[Item], now: datetime | None = None) -> list[Item]:
    now = now or datetime.now(UTC)
    return [item for item in items if is_recent(item, now)]


def is_expansion_of_owned(
    item: Item,
    owned_ids: set[int],
    expansions: Mapping[int, Sequence[ExpansionLink]],
) -> bool:
    return any(
        link.base_id in owned_ids and link.base_id != item.item_id for link in expansions.get(item.item_id, ())
    )


def _tiered(
    items: list[Item],
    owned_ids: set[int],
    expansions: Mapping[int, Sequence[ExpansionLink]],
    now: datetime,
) -> list[Item]:
    stale_cutoff = _years_ago(now, _STALE_YEARS)

    deferred: list[Item] = []
    never_played: list[Item] = []
    stale: list[Item] = []
    rest: list[Item] = []

    for item in items:
        if is_recent(item, now):
            continue
        if is_expansion_of_owned(item, owned_ids, expansions):
            deferred.append(item)
        elif item.play_count == 0:
            never_played.append(item)
        elif item.last_played is None or _aware(item.last_played) < stale_cutoff:
            stale.append(item)
        else:
            rest.append(item)

    never_played.sort(key=lambda i: (_aware(i.date_added) if i.date_added else _EPOCH, *_name_key(i)))
    stale.sort(key=lambda i: (_rating(i), *_name_key(i)))
    rest.sort(key=lambda i: (_aware(i.last_played) if i.last_played else _EPOCH, *_name_key(i)))
    deferred.sort(key=_name_key)

    return never_played + stale + rest + deferred


def build_queue(
    items: Iterable[Item],
    decided_ids: Iterable[int],
    expansions: Mapping[int, Sequence[ExpansionLink]],
    mode: SortMode = "default",
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[Item]:
    """Order the undecided items for the interview.

    The result depends only on the inputs (and *rng* for ``shuffle``), so the
    queue can be rebuilt whenever fresh cache data arrives.  Missing
    expansion entries count as "no link".
    """
    items = list(items)
    owned_ids = {item.item_id for item in items}
    decided = set(decided_ids)
    pending = [item for item in items if item.item_id not in decided]

    if mode == "shuffle":
        shuffled = list(pending)
        (rng or random.Random()).shuffle(shuffled)
        return shuffled
    if mode == "alphabetical":
        return sorted(pending, key=_name_key)
    if mode == "rating":
        return sorted(pending, key=lambda i: (_rating(i), *_name_key(i)))
    if mode == "default":
        return _tiered(pending, owned_ids, expansions, _aware(now or datetime.now(UTC)))

    msg = f"Unknown sort mode: {mode!r}"
    raise ValueError(msg)


def locate(queue: Sequence[Item], item_id: int) -> int | None:
    """Index of *item_id* in a rebuilt queue, or None when it dropped out."""
    for index, item in enumerate(queue):
        if item.item_id == item_id:
            return index
    return None
