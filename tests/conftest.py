"""Shared fixtures for Shelfwise tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from shelfwise.config import AppConfig, CatalogConfig, SyncConfig


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all Shelfwise runtime files to a temporary directory.

    Patches ``shelfwise.config.get_base_dir`` (and the re-imported reference
    in ``shelfwise.cli``) so that nothing touches the real ``~/.shelfwise/``.
    """
    fake_base = tmp_path / ".shelfwise"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("shelfwise.config.get_base_dir", lambda: fake_base)
    monkeypatch.setattr("shelfwise.cli.get_base_dir", lambda: fake_base)

    return fake_base


@pytest.fixture()
def fast_config(base_dir: Path) -> AppConfig:
    """Config with every pacing delay and backoff step set to zero."""
    return AppConfig(
        catalog=CatalogConfig(base_url="https://catalog.test", retry_backoff=[0.0, 0.0, 0.0]),
        sync=SyncConfig(expansion_delay_seconds=0.0, dimension_delay_seconds=0.0),
    )
