"""Async client for the catalog's XML API 2 using httpx.

Endpoints:
- POST /login/api/v1 (session cookies)
- GET /xmlapi2/thing?id=a,b,c (expansion links, max 15 ids)
- GET /xmlapi2/thing?id=a,b,c&versions=1 (box dimensions)
- GET /xmlapi2/collection (one-shot collection import)

The service answers 202 while it prepares a response and 401 when an
endpoint is closed to the current credentials.  Batch reads never raise for
either: they return a classified :class:`BatchResult` instead.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

import httpx
import structlog

from shelfwise.config import CatalogConfig
from shelfwise.storage.models import BoxDimensions, ExpansionLink, Item
from shelfwise.sync.parser import parse_collection, parse_dimensions, parse_expansions

log = structlog.get_logger(__name__)

T = TypeVar("T")

_LOGIN_PATH = "/login/api/v1"
_THING_PATH = "/xmlapi2/thing"
_COLLECTION_PATH = "/xmlapi2/collection"


class CatalogAuthError(Exception):
    """Raised when the catalog login is rejected."""


class CatalogAPIError(Exception):
    """Raised when a one-shot catalog request cannot be completed."""


class BatchOutcome(StrEnum):
    OK = "ok"
    RETRYABLE = "retryable"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"


@dataclass
class BatchResult(Generic[T]):
    """Classified outcome of one batched read.

    ``records`` is empty for every outcome except ``OK``.
    """

    outcome: BatchOutcome
    records: dict[int, T] = field(default_factory=dict)
    status_code: int | None = None

    @property
    def unauthorized(self) -> bool:
        return self.outcome is BatchOutcome.UNAUTHORIZED


@dataclass
class CollectionResult:
    status_code: int
    items: list[Item] = field(default_factory=list)
    error: str | None = None


class CatalogSession:
    """Opaque session cookies shared by every client in the process."""

    def __init__(self) -> None:
        self.cookies: dict[str, str] = {}

    @property
    def logged_in(self) -> bool:
        return bool(self.cookies)

    def cookie_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())

    def clear(self) -> None:
        self.cookies = {}


class CatalogClient:
    """Async catalog client with 202 backoff and 401 classification."""

    def __init__(
        self,
        config: CatalogConfig,
        session: CatalogSession | None = None,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._session = session if session is not None else CatalogSession()
        self._transport = _transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> CatalogClient:
        kw: dict = {"timeout": self._config.request_timeout, "base_url": self._config.base_url}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def session(self) -> CatalogSession:
        return self._session

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._session.logged_in:
            headers["Cookie"] = self._session.cookie_header()
        token = self._config.api_token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # -- auth --

    async def login(self, username: str, password: str) -> None:
        """Log in and keep the returned session cookies."""
        assert self._client is not None  # noqa: S101
        resp = await self._client.post(
            _LOGIN_PATH,
            json={"credentials": {"username": username, "password": password}},
            follow_redirects=False,
        )
        log.info("catalog_login", status=resp.status_code)

        if not resp.is_success and resp.status_code != 302:
            raise CatalogAuthError("Catalog login failed. Check your username and password.")

        cookies = {name: value for name, value in resp.cookies.items() if value}
        if not cookies:
            raise CatalogAuthError("Catalog login returned no session cookies.")

        self._session.cookies = cookies
        log.info("catalog_session_stored", cookies=len(cookies))

    # -- batched reads --

    async def fetch_expansions(self, item_ids: Sequence[int]) -> BatchResult[list[ExpansionLink]]:
        """Fetch expansion links for up to ``batch_size`` items."""
        return await self._fetch_batch(item_ids, {}, parse_expansions, dataset="expansions")

    async def fetch_dimensions(self, item_ids: Sequence[int]) -> BatchResult[BoxDimensions]:
        """Fetch box dimensions for up to ``batch_size`` items."""
        return await self._fetch_batch(item_ids, {"versions": "1"}, parse_dimensions, dataset="dimensions")

    async def _fetch_batch(
        self,
        item_ids: Sequence[int],
        extra_params: dict[str, str],
        parse: Callable[[bytes], dict[int, T]],
        *,
        dataset: str,
    ) -> BatchResult[T]:
        assert self._client is not None  # noqa: S101
        if len(item_ids) > self._config.batch_size:
            msg = f"Batch of {len(item_ids)} ids exceeds the limit of {self._config.batch_size}"
            raise ValueError(msg)

        params = {"id": ",".join(str(i) for i in item_ids), **extra_params}
        backoff = self._config.retry_backoff

        for attempt in range(len(backoff) + 1):
            try:
                resp = await self._client.get(_THING_PATH, params=params, headers=self._headers())
            except httpx.TransportError as exc:
                log.warning("catalog_network_error", dataset=dataset, error=str(exc), batch=len(item_ids))
                return BatchResult(BatchOutcome.FAILED)

            if resp.status_code == 200:
                return BatchResult(BatchOutcome.OK, parse(resp.content), 200)

            if resp.status_code == 401:
                log.warning("catalog_unauthorized", dataset=dataset)
                return BatchResult(BatchOutcome.UNAUTHORIZED, status_code=401)

            if resp.status_code == 202:
                if attempt < len(backoff):
                    log.info("catalog_still_preparing", dataset=dataset, retry_in=backoff[attempt], attempt=attempt)
                    await asyncio.sleep(backoff[attempt])
                    continue
                log.warning("catalog_retries_exhausted", dataset=dataset, batch=len(item_ids))
                return BatchResult(BatchOutcome.RETRYABLE, status_code=202)

            log.warning("catalog_batch_failed", dataset=dataset, status=resp.status_code, batch=len(item_ids))
            return BatchResult(BatchOutcome.FAILED, status_code=resp.status_code)

        return BatchResult(BatchOutcome.RETRYABLE, status_code=202)

    # -- one-shot import --

    async def fetch_collection(self, username: str) -> CollectionResult:
        """Fetch the owned collection once; 202 is returned to the caller to poll."""
        assert self._client is not None  # noqa: S101
        params = {
            "username": username,
            "own": "1",
            "stats": "1",
            "excludesubtype": "boardgameexpansion",
        }
        try:
            resp = await self._client.get(_COLLECTION_PATH, params=params, headers=self._headers())
        except httpx.TransportError as exc:
            raise CatalogAPIError(f"Network error while fetching collection: {exc}") from exc

        log.info("catalog_collection", status=resp.status_code, logged_in=self._session.logged_in)

        if resp.status_code == 200:
            items = parse_collection(resp.content)
            log.info("catalog_collection_parsed", items=len(items))
            return CollectionResult(200, items)

        if resp.status_code == 202:
            return CollectionResult(202)

        if resp.status_code == 401:
            return CollectionResult(401, error="Catalog returned 401. Try logging in again.")

        return CollectionResult(resp.status_code, error=f"Catalog API returned status {resp.status_code}")
