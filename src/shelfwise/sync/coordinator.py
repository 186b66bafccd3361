"""Background sync runs that fill the expansion and dimension caches."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from shelfwise.sync.client import CatalogClient, CatalogSession
from shelfwise.sync.matcher import NamedItem, match_expansions

if TYPE_CHECKING:
    from shelfwise.config import AppConfig, CatalogConfig
    from shelfwise.storage.cache import CacheStore
    from shelfwise.storage.models import BoxDimensions, ExpansionLink

log = structlog.get_logger(__name__)

ClientFactory = Callable[["CatalogConfig", CatalogSession], CatalogClient]


class SyncMethod(StrEnum):
    API = "api"
    NAME_MATCH = "name-match"
    NONE = "none"


@dataclass
class SyncStatus:
    in_progress: bool = False
    fetched: int = 0
    total: int = 0
    cached: int = 0
    method: SyncMethod = SyncMethod.NONE

    def to_dict(self) -> dict:
        return {
            "in_progress": self.in_progress,
            "fetched": self.fetched,
            "total": self.total,
            "cached": self.cached,
            "method": self.method.value,
        }


class SyncCoordinator:
    """Single-flight background fill of one cache dataset.

    ``start`` never awaits network I/O: it computes what is missing from the
    cache and spawns one task.  A second ``start`` while that task runs is
    ignored.

    Not used directly: build :class:`ExpansionSyncCoordinator` or
    :class:`DimensionSyncCoordinator`, which supply the per-dataset ``_sync``.
    """

    dataset = "dataset"

    def __init__(
        self,
        config: AppConfig,
        store: CacheStore,
        *,
        client_factory: ClientFactory | None = None,
        session: CatalogSession | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._client_factory = client_factory
        self._session = session if session is not None else CatalogSession()
        self._status = SyncStatus()
        self._task: asyncio.Task | None = None

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> SyncStatus:
        return SyncStatus(
            in_progress=self._status.in_progress,
            fetched=self._status.fetched,
            total=self._status.total,
            cached=len(self._store),
            method=self._status.method,
        )

    def start(self, identifiers: Iterable[int], items: Sequence[NamedItem] | None = None) -> bool:
        """Start filling the cache for *identifiers*; return whether a run began."""
        if self._status.in_progress or self.is_running:
            log.info("sync_already_running", dataset=self.dataset)
            return False

        self._store.load()
        needed = self._store.missing(identifiers)
        if not needed:
            log.debug("sync_nothing_needed", dataset=self.dataset)
            return False

        self._status = SyncStatus(in_progress=True, total=len(needed))
        log.info("sync_started", dataset=self.dataset, needed=len(needed), cached=len(self._store))
        self._task = asyncio.create_task(self._run(needed, list(items or [])))
        return True

    async def join(self) -> None:
        """Wait for the active run, if any, to finish."""
        if self._task is not None:
            await self._task

    async def _run(self, needed: list[int], items: list[NamedItem]) -> None:
        try:
            async with self._create_client() as client:
                await self._sync(client, needed, items)
        except Exception:
            log.exception("sync_failed", dataset=self.dataset)
        finally:
            self._store.flush()
            self._status.in_progress = False
            log.info(
                "sync_finished",
                dataset=self.dataset,
                fetched=self._status.fetched,
                total=self._status.total,
                cached=len(self._store),
                method=self._status.method.value,
            )

    async def _sync(self, client: CatalogClient, needed: list[int], items: list[NamedItem]) -> None:
        """Fetch and merge *needed* for one dataset; overridden by each subclass."""
        raise NotImplementedError

    def _create_client(self) -> CatalogClient:
        if self._client_factory:
            return self._client_factory(self._config.catalog, self._session)
        return CatalogClient(self._config.catalog, self._session)

    def _batches(self, ids: list[int]) -> list[list[int]]:
        size = self._config.catalog.batch_size
        return [ids[i : i + size] for i in range(0, len(ids), size)]

    def _absorb(self, records: dict[int, Any], attempted: int) -> None:
        """Merge one batch, persist it and advance progress."""
        if records:
            self._store.merge(records)
        self._store.flush()
        self._status.fetched = min(self._status.total, self._status.fetched + attempted)
        log.debug(
            "sync_batch_done",
            dataset=self.dataset,
            records=len(records),
            fetched=self._status.fetched,
            total=self._status.total,
        )


class ExpansionSyncCoordinator(SyncCoordinator):
    """Fills the expansion-link cache, falling back to name matching on 401."""

    dataset = "expansions"

    async def _sync(self, client: CatalogClient, needed: list[int], items: list[NamedItem]) -> None:
        batches = self._batches(needed)
        trial = await client.fetch_expansions(batches[0])

        if trial.unauthorized:
            log.warning("expansions_unauthorized_fallback", needed=len(needed), items=len(items))
            matched = match_expansions(items)
            fallback: dict[int, list[ExpansionLink]] = {item_id: matched.get(item_id, []) for item_id in needed}
            self._store.merge(fallback)
            self._status.method = SyncMethod.NAME_MATCH
            self._status.fetched = self._status.total
            return

        self._status.method = SyncMethod.API
        self._absorb(trial.records, len(batches[0]))

        for batch in batches[1:]:
            await asyncio.sleep(self._config.sync.expansion_delay_seconds)
            result = await client.fetch_expansions(batch)
            if result.unauthorized:
                log.warning("expansions_unauthorized_stop", fetched=self._status.fetched, total=self._status.total)
                break
            self._absorb(result.records, len(batch))


class DimensionSyncCoordinator(SyncCoordinator):
    """Fills the box-dimension cache; unresolved items keep the default volume."""

    dataset = "dimensions"

    @property
    def default_volume(self) -> float:
        return self._config.sync.default_volume

    def volume_for(self, item_id: int) -> float:
        dims: BoxDimensions | None = self._store.get().get(item_id)
        return dims.volume if dims is not None else self.default_volume

    async def _sync(self, client: CatalogClient, needed: list[int], items: list[NamedItem]) -> None:
        for index, batch in enumerate(self._batches(needed)):
            if index:
                await asyncio.sleep(self._config.sync.dimension_delay_seconds)
            result = await client.fetch_dimensions(batch)
            if result.unauthorized:
                log.warning("dimensions_unauthorized_stop", fetched=self._status.fetched, total=self._status.total)
                break
            self._status.method = SyncMethod.API
            self._absorb(result.records, len(batch))
