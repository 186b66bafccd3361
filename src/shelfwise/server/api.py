"""HTTP API for the Shelfwise server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx
import structlog
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shelfwise.queue import build_queue, recent_items
from shelfwise.storage.cache import dimension_store, expansion_store
from shelfwise.storage.database import Database
from shelfwise.storage.models import Decision, Item, ItemRef, SortMode
from shelfwise.sync.client import CatalogAPIError, CatalogAuthError, CatalogClient, CatalogSession
from shelfwise.sync.coordinator import (
    ClientFactory,
    DimensionSyncCoordinator,
    ExpansionSyncCoordinator,
    SyncCoordinator,
)

if TYPE_CHECKING:
    from shelfwise.config import AppConfig

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class SyncRequest(BaseModel):
    """Identifiers to fill in, plus names for the expansion fallback."""

    identifiers: list[int] = Field(default_factory=list)
    items: list[ItemRef] = Field(default_factory=list)


class QueueRequest(BaseModel):
    items: list[Item]
    mode: SortMode = "default"


class LoginRequest(BaseModel):
    username: str
    password: str


# ---------------------------------------------------------------------------
# Server runtime state
# ---------------------------------------------------------------------------


class AppState:
    """Runtime objects shared by every request, built once at startup."""

    def __init__(self, config: AppConfig, *, client_factory: ClientFactory | None = None) -> None:
        self.config = config
        self.started_at: datetime = datetime.now(UTC)
        self.session = CatalogSession()
        self.db = Database(config.database_path)
        self._client_factory = client_factory
        self.expansions = ExpansionSyncCoordinator(
            config,
            expansion_store(config.expansion_cache_path),
            client_factory=client_factory,
            session=self.session,
        )
        self.dimensions = DimensionSyncCoordinator(
            config,
            dimension_store(config.dimension_cache_path),
            client_factory=client_factory,
            session=self.session,
        )

    def catalog_client(self) -> CatalogClient:
        if self._client_factory:
            return self._client_factory(self.config.catalog, self.session)
        return CatalogClient(self.config.catalog, self.session)

    def get_status(self) -> dict:
        uptime = (datetime.now(UTC) - self.started_at).total_seconds()
        return {
            "uptime_seconds": round(uptime, 2),
            "logged_in": self.session.logged_in,
            "expansions": self.expansions.status().to_dict(),
            "dimensions": self.dimensions.status().to_dict(),
        }


def _start_sync(coordinator: SyncCoordinator, body: SyncRequest) -> dict | JSONResponse:
    if not body.identifiers:
        return JSONResponse({"error": "identifiers must not be empty"}, status_code=400)
    started = coordinator.start(body.identifiers, body.items)
    log.info("sync_requested", dataset=coordinator.dataset, identifiers=len(body.identifiers), started=started)
    return {"ok": True, "started": started, "status": coordinator.status().to_dict()}


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(state: AppState) -> FastAPI:
    """Build the FastAPI application around a prepared :class:`AppState`."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001, ANN001
        await state.db.connect()
        log.info("server_started", database=str(state.db.path))
        yield
        state.expansions.store.flush()
        state.dimensions.store.flush()
        await state.db.close()
        log.info("server_stopped")

    app = FastAPI(title="shelfwise", docs_url=None, redoc_url=None, lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict:
        uptime = (datetime.now(UTC) - state.started_at).total_seconds()
        return {"ok": True, "uptime_seconds": round(uptime, 2)}

    @app.get("/api/status")
    async def api_status() -> dict:
        return state.get_status()

    # -- derived datasets -----------------------------------------------------

    @app.get("/api/expansions")
    async def get_expansions() -> dict:
        data = state.expansions.store.get()
        return {
            "data": {str(item_id): [link.model_dump() for link in links] for item_id, links in data.items()},
            "status": state.expansions.status().to_dict(),
        }

    @app.post("/api/expansions")
    async def post_expansions(body: SyncRequest):  # noqa: ANN201
        return _start_sync(state.expansions, body)

    @app.get("/api/dimensions")
    async def get_dimensions() -> dict:
        data = state.dimensions.store.get()
        return {
            "data": {str(item_id): dims.model_dump() for item_id, dims in data.items()},
            "status": state.dimensions.status().to_dict(),
            "default_volume": state.dimensions.default_volume,
        }

    @app.post("/api/dimensions")
    async def post_dimensions(body: SyncRequest):  # noqa: ANN201
        return _start_sync(state.dimensions, body)

    # -- queue ----------------------------------------------------------------

    @app.post("/api/queue")
    async def post_queue(body: QueueRequest) -> dict:
        decided = await state.db.decided_ids()
        queue = build_queue(body.items, decided, state.expansions.store.get(), body.mode)
        excluded = 0
        if body.mode == "default":
            excluded = len(recent_items(i for i in body.items if i.item_id not in decided))
        return {
            "queue": [item.model_dump(mode="json") for item in queue],
            "excluded_recent": excluded,
        }

    # -- catalog session ------------------------------------------------------

    @app.get("/api/login")
    async def get_login() -> dict:
        return {"logged_in": state.session.logged_in}

    @app.post("/api/login")
    async def post_login(body: LoginRequest):  # noqa: ANN201
        try:
            async with state.catalog_client() as client:
                await client.login(body.username, body.password)
        except CatalogAuthError as exc:
            log.warning("login_rejected", username=body.username)
            return JSONResponse({"error": str(exc)}, status_code=401)
        except httpx.HTTPError as exc:
            log.error("login_failed", error=str(exc))
            return JSONResponse({"error": f"Catalog unreachable: {exc}"}, status_code=502)
        return {"logged_in": True}

    @app.delete("/api/login")
    async def delete_login() -> dict:
        state.session.clear()
        log.info("logged_out")
        return {"logged_in": False}

    # -- collection import ----------------------------------------------------

    @app.get("/api/collection")
    async def get_collection(username: str = Query(default="")):  # noqa: ANN201
        username = username.strip() or state.config.catalog.username
        if not username:
            return JSONResponse({"error": "username is required"}, status_code=400)

        try:
            async with state.catalog_client() as client:
                result = await client.fetch_collection(username)
        except CatalogAPIError as exc:
            return JSONResponse({"error": str(exc)}, status_code=502)

        if result.status_code == 200:
            return {"items": [item.model_dump(mode="json") for item in result.items], "count": len(result.items)}
        if result.status_code == 202:
            return JSONResponse({"status": "processing"}, status_code=202)
        code = result.status_code if result.status_code >= 400 else 502
        return JSONResponse({"error": result.error}, status_code=code)

    # -- decision log ---------------------------------------------------------

    @app.get("/api/decisions")
    async def get_decisions() -> dict:
        decisions = await state.db.list_decisions()
        return {
            "decisions": [d.model_dump(mode="json") for d in decisions],
            "counts": await state.db.count_by_status(),
        }

    @app.post("/api/decisions")
    async def post_decision(body: Decision) -> dict:
        saved = await state.db.save_decision(body)
        log.info("decision_saved", item_id=saved.item_id, status=saved.status)
        return saved.model_dump(mode="json")

    @app.delete("/api/decisions/{item_id}")
    async def delete_decision(item_id: int):  # noqa: ANN201
        if not await state.db.delete_decision(item_id):
            return JSONResponse({"error": "not found"}, status_code=404)
        return {"ok": True}

    return app
