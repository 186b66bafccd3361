"""Shelfwise storage layer: JSON dataset caches and the SQLite decision log."""

from shelfwise.storage.cache import CacheStore, dimension_store, expansion_store
from shelfwise.storage.database import Database
from shelfwise.storage.models import (
    BoxDimensions,
    Decision,
    ExpansionLink,
    Item,
    ItemRef,
)

__all__ = [
    "BoxDimensions",
    "CacheStore",
    "Database",
    "Decision",
    "ExpansionLink",
    "Item",
    "ItemRef",
    "dimension_store",
    "expansion_store",
]
