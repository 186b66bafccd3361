"""Name-based expansion matching, used when the catalog API is unavailable."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from shelfwise.storage.models import ExpansionLink

_SEPARATORS = (":", " - ", " – ")
_MIN_PREFIX_LEN = 3


class NamedItem(Protocol):
    item_id: int
    name: str


def normalize_name(name: str) -> str:
    return name.strip().lower()


def candidate_prefix(name: str) -> str | None:
    """Return the lower-cased title before the earliest separator.

    The separator must not start the name, and prefixes shorter than three
    characters are discarded.
    """
    positions = [pos for sep in _SEPARATORS if (pos := name.find(sep, 1)) > 0]
    if not positions:
        return None
    prefix = normalize_name(name[: min(positions)])
    if len(prefix) < _MIN_PREFIX_LEN:
        return None
    return prefix


def match_expansions(items: Iterable[NamedItem]) -> dict[int, list[ExpansionLink]]:
    """Guess "expansion of" relationships from item names alone.

    Every item appears in the result; unmatched items map to ``[]`` and a
    matched item gets exactly one link.

    Steps:
    1. Index all items by exact (case-insensitive) name
    2. Group items by the title before their first separator
    3. A lone group member is an expansion only if another item is named
       exactly like the prefix
    4. In a larger group the base is the item named exactly like the
       prefix, else the member with the shortest name
    """
    items = list(items)
    by_name: dict[str, NamedItem] = {}
    groups: dict[str, list[NamedItem]] = {}
    result: dict[int, list[ExpansionLink]] = {}

    for item in items:
        result[item.item_id] = []
        by_name.setdefault(normalize_name(item.name), item)
        prefix = candidate_prefix(item.name)
        if prefix is not None:
            groups.setdefault(prefix, []).append(item)

    for prefix, members in groups.items():
        exact = by_name.get(prefix)
        if len(members) == 1:
            if exact is None or exact.item_id == members[0].item_id:
                continue
            base = exact
        else:
            base = exact if exact is not None else min(members, key=lambda m: len(m.name))

        link = ExpansionLink(base_id=base.item_id, base_name=base.name)
        for member in members:
            if member.item_id == base.item_id or result[member.item_id]:
                continue
            result[member.item_id] = [link]

    return result
