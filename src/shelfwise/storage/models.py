"""Pydantic models shared by the sync engine, the queue builder and the API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

DecisionStatus = Literal["keep", "remove", "skip"]
SortMode = Literal["default", "shuffle", "alphabetical", "rating"]


class ItemRef(BaseModel):
    """Identifier/name pair, enough for the name-based expansion fallback."""

    item_id: int
    name: str


class Item(ItemRef):
    """One owned collection entry, as produced by the collection import."""

    collection_id: int = 0
    year_published: int = 0
    date_added: datetime | None = None
    play_count: int = Field(default=0, ge=0)
    last_played: datetime | None = None
    user_rating: float | None = None
    weight: float = 0.0
    min_players: int = 1
    max_players: int = 1
    comment: str = ""


class ExpansionLink(BaseModel):
    """Asserts that the owning item is an expansion of ``base_id``."""

    base_id: int
    base_name: str


class BoxDimensions(BaseModel):
    """Box measurements in inches; volume in cubic inches."""

    width: float = Field(gt=0)
    length: float = Field(gt=0)
    depth: float = Field(gt=0)
    volume: float = Field(gt=0)


class Decision(BaseModel):
    """A keep/remove/skip verdict recorded for one item."""

    item_id: int
    item_name: str
    status: DecisionStatus
    reasoning: str = ""
    notes: str = ""
    decided_at: datetime | None = None
