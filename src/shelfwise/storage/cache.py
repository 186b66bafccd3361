"""JSON-backed cache for the derived per-item datasets.

Each dataset lives in one pretty-printed JSON document mapping a stringified
item identifier to its value.  A key that is present means "resolved" (even
if the value is an empty list); an absent key means "not yet attempted".
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Generic, TypeVar

import structlog
from pydantic import TypeAdapter, ValidationError

from shelfwise.storage.models import BoxDimensions, ExpansionLink

log = structlog.get_logger(__name__)

V = TypeVar("V")


class CacheStore(Generic[V]):
    """In-memory mapping of item id to value, mirrored to a JSON file."""

    def __init__(self, path: Path, value_type: Any) -> None:
        self.path = path
        self._adapter: TypeAdapter[dict[int, V]] = TypeAdapter(dict[int, value_type])
        self._data: dict[int, V] = {}
        self._loaded = False

    @property
    def tmp_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + ".tmp")

    def __len__(self) -> int:
        return len(self.get())

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.get()

    # -- lifecycle ----------------------------------------------------------

    def load(self) -> dict[int, V]:
        """Read the document once per process lifetime.

        A missing, unreadable or unparsable file leaves the store empty.
        """
        if self._loaded:
            return self._data
        self._loaded = True

        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            self._data = {}
            return self._data
        except OSError as exc:
            log.warning("cache_read_failed", path=str(self.path), error=str(exc))
            self._data = {}
            return self._data

        try:
            self._data = self._adapter.validate_json(raw)
        except ValidationError as exc:
            log.warning("cache_corrupt", path=str(self.path), errors=exc.error_count())
            self._data = {}
            return self._data

        log.debug("cache_loaded", path=str(self.path), entries=len(self._data))
        return self._data

    def get(self) -> dict[int, V]:
        """Return the live mapping, loading it on first use."""
        if not self._loaded:
            self.load()
        return self._data

    def missing(self, item_ids: Iterable[int]) -> list[int]:
        """Return the ids not yet resolved, in order, without duplicates."""
        data = self.get()
        return [item_id for item_id in dict.fromkeys(item_ids) if item_id not in data]

    def merge(self, partial: Mapping[int, V]) -> None:
        """Overwrite every key of *partial* into the store."""
        self.get().update(partial)

    def flush(self) -> bool:
        """Write the whole mapping to disk via a temp file and an atomic rename.

        Returns False (after logging) when the write fails; the in-memory
        state is kept and written again on the next flush.
        """
        data = self.get()
        tmp = self.tmp_path
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(self._adapter.dump_json(data, indent=2))
            os.replace(tmp, self.path)
        except OSError as exc:
            log.warning("cache_flush_failed", path=str(self.path), error=str(exc))
            return False
        return True


def expansion_store(path: Path) -> CacheStore[list[ExpansionLink]]:
    return CacheStore(path, list[ExpansionLink])


def dimension_store(path: Path) -> CacheStore[BoxDimensions]:
    return CacheStore(path, BoxDimensions)
