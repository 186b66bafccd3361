"""Parsers for the catalog's XML API payloads.

Each parser works item by item: a malformed ``<item>`` is skipped while its
siblings are still returned.  A payload that is not XML at all yields an
empty result rather than an error.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import structlog

from shelfwise.storage.models import BoxDimensions, ExpansionLink, Item

log = structlog.get_logger(__name__)

_THING_TYPES = ("boardgame", "boardgameexpansion")
_EXPANSION_LINK = "boardgameexpansion"
_VERSION_TYPE = "boardgameversion"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _root(xml: str | bytes) -> ET.Element | None:
    try:
        return ET.fromstring(xml)
    except ET.ParseError as exc:
        log.warning("malformed_payload", error=str(exc))
        return None


def _things(root: ET.Element) -> list[ET.Element]:
    return [item for item in root.iter("item") if item.get("type") in _THING_TYPES]


def _int_attr(elem: ET.Element, name: str) -> int:
    value = elem.get(name)
    if value is None:
        raise ValueError(f"missing attribute {name!r} on <{elem.tag}>")
    return int(value)


def _float_value(parent: ET.Element, tag: str) -> float:
    elem = parent.find(tag)
    if elem is None:
        return 0.0
    try:
        return float(elem.get("value", "0"))
    except ValueError:
        return 0.0


# ---------------------------------------------------------------------------
# /thing: expansion links
# ---------------------------------------------------------------------------


def parse_expansions(xml: str | bytes) -> dict[int, list[ExpansionLink]]:
    """Map each item in a ``/thing`` payload to the base games it expands.

    Only inbound ``boardgameexpansion`` links are collected: on an expansion
    they point at its base game, while a base game lists its own expansions
    as outbound links.  Items without such links map to ``[]``.
    """
    root = _root(xml)
    if root is None:
        return {}

    result: dict[int, list[ExpansionLink]] = {}
    for thing in _things(root):
        try:
            item_id = _int_attr(thing, "id")
            links = [
                ExpansionLink(base_id=_int_attr(link, "id"), base_name=link.get("value", ""))
                for link in thing.findall("link")
                if link.get("type") == _EXPANSION_LINK and link.get("inbound") == "true"
            ]
        except ValueError as exc:
            log.warning("skip_malformed_item", dataset="expansions", error=str(exc))
            continue
        result[item_id] = links
    return result


# ---------------------------------------------------------------------------
# /thing?versions=1: box dimensions
# ---------------------------------------------------------------------------


def parse_dimensions(xml: str | bytes) -> dict[int, BoxDimensions]:
    """Map each item in a ``/thing?versions=1`` payload to its box size.

    The first version whose width, length, depth and volume are all still
    positive after rounding to two decimals wins.  Volume is computed from
    the unrounded measurements.  Items without a usable version are omitted.
    """
    root = _root(xml)
    if root is None:
        return {}

    result: dict[int, BoxDimensions] = {}
    for thing in _things(root):
        try:
            item_id = _int_attr(thing, "id")
        except ValueError as exc:
            log.warning("skip_malformed_item", dataset="dimensions", error=str(exc))
            continue

        versions = thing.find("versions")
        if versions is None:
            continue

        for version in versions.findall("item"):
            if version.get("type") != _VERSION_TYPE:
                continue
            width = _float_value(version, "width")
            length = _float_value(version, "length")
            depth = _float_value(version, "depth")
            if not (width > 0 and length > 0 and depth > 0):
                continue
            try:
                dims = BoxDimensions(
                    width=round(width, 2),
                    length=round(length, 2),
                    depth=round(depth, 2),
                    volume=round(width * length * depth, 2),
                )
            except ValueError as exc:
                # Positive but below the two-decimal resolution
                log.warning("skip_malformed_item", dataset="dimensions", item_id=item_id, error=str(exc))
                continue
            result[item_id] = dims
            break
    return result


# ---------------------------------------------------------------------------
# /collection: one-shot import
# ---------------------------------------------------------------------------


def _text(parent: ET.Element, tag: str) -> str | None:
    elem = parent.find(tag)
    if elem is None or elem.text is None:
        return None
    return elem.text.strip()


def _parse_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, _DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _parse_collection_item(elem: ET.Element) -> Item:
    item_id = _int_attr(elem, "objectid")
    play_count = int(_text(elem, "numplays") or "0")

    status = elem.find("status")
    date_added = _parse_date(status.get("lastmodified") if status is not None else None)

    min_players = max_players = 1
    user_rating: float | None = None
    weight = 0.0
    stats = elem.find("stats")
    if stats is not None:
        min_players = int(stats.get("minplayers") or 1)
        max_players = int(stats.get("maxplayers") or 1)
        rating = stats.find("rating")
        if rating is not None:
            raw_rating = rating.get("value", "")
            if raw_rating and raw_rating != "N/A":
                try:
                    user_rating = float(raw_rating)
                except ValueError:
                    user_rating = None
            weight = _float_value(rating, "averageweight")

    return Item(
        item_id=item_id,
        collection_id=int(elem.get("collid") or 0),
        name=_text(elem, "name") or "Unknown",
        year_published=int(_text(elem, "yearpublished") or "0"),
        date_added=date_added,
        play_count=play_count,
        # The collection feed has no per-play dates; the status timestamp is
        # the closest proxy for when an item was last touched.
        last_played=date_added if play_count > 0 else None,
        user_rating=user_rating,
        weight=weight,
        min_players=min_players,
        max_players=max_players,
        comment=_text(elem, "comment") or "",
    )


def parse_collection(xml: str | bytes) -> list[Item]:
    """Parse a ``/collection`` payload into owned base-game items."""
    root = _root(xml)
    if root is None:
        return []

    items: list[Item] = []
    for elem in root.iter("item"):
        if elem.get("subtype") != "boardgame":
            continue
        try:
            items.append(_parse_collection_item(elem))
        except ValueError as exc:
            log.warning("skip_malformed_item", dataset="collection", error=str(exc))
    return items
