"""Sync module: catalog client, parsers, name matcher, and coordinators."""

from shelfwise.sync.client import BatchOutcome, BatchResult, CatalogClient, CatalogSession
from shelfwise.sync.coordinator import (
    DimensionSyncCoordinator,
    ExpansionSyncCoordinator,
    SyncMethod,
    SyncStatus,
)

__all__ = [
    "BatchOutcome",
    "BatchResult",
    "CatalogClient",
    "CatalogSession",
    "DimensionSyncCoordinator",
    "ExpansionSyncCoordinator",
    "SyncMethod",
    "SyncStatus",
]
