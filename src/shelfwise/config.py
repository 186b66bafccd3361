"""Configuration management for Shelfwise."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".shelfwise"
_CONFIG_FILE = "config.toml"
_DATA_DIR = "data"
_LOG_DIR = "logs"
_EXPANSION_CACHE_FILE = "expansion-links.json"
_DIMENSION_CACHE_FILE = "dimensions.json"
_DATABASE_FILE = "shelfwise.db"

# Per-request ceiling documented by the catalog's /thing endpoint.
MAX_BATCH_SIZE = 15


def get_base_dir() -> Path:
    """Return the base directory for all Shelfwise runtime files (~/.shelfwise/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    """Settings for the local HTTP server."""

    host: str = Field(default="127.0.0.1", description="Interface the API binds to")
    port: int = Field(default=8741, description="Port for the API")
    log_level: str = Field(default="info", description="Logging level")


class CatalogConfig(BaseModel):
    """Catalog service endpoint, credentials and request pacing."""

    base_url: str = Field(default="https://boardgamegeek.com", description="Catalog site root")
    api_token: SecretStr = Field(default=SecretStr(""), description="Bearer token for the XML API")
    username: str = Field(default="", description="Catalog username whose collection is imported")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    batch_size: int = Field(default=MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE, description="Identifiers per request")
    retry_backoff: list[float] = Field(
        default_factory=lambda: [2.0, 4.0, 8.0],
        description="Seconds to wait before each retry of a 'still preparing' response",
    )


class SyncConfig(BaseModel):
    """Settings that control background dataset synchronisation."""

    expansion_delay_seconds: float = Field(default=2.5, ge=0, description="Pause between expansion batches")
    dimension_delay_seconds: float = Field(default=2.0, ge=0, description="Pause between dimension batches")
    default_volume: float = Field(default=12.0 * 12.0 * 3.0, gt=0, description="Box volume assumed when unknown (in³)")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def data_dir(self) -> Path:
        return self.base_dir / _DATA_DIR

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    @property
    def expansion_cache_path(self) -> Path:
        return self.data_dir / _EXPANSION_CACHE_FILE

    @property
    def dimension_cache_path(self) -> Path:
        return self.data_dir / _DIMENSION_CACHE_FILE

    @property
    def database_path(self) -> Path:
        return self.data_dir / _DATABASE_FILE

    def has_api_token(self) -> bool:
        """Return True if a bearer token for the catalog API is set."""
        return bool(self.catalog.api_token.get_secret_value())


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base, data and log directories if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _DATA_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return (get_base_dir() / _CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, SecretStr):
        return _format_toml_value(value.get_secret_value())
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, list):
        return "[" + ", ".join(_format_toml_value(v) for v in value) + "]"
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure we actually use (tables with
    scalar or list values).
    """
    lines: list[str] = []
    sections = [
        ("server", config.server),
        ("catalog", config.catalog),
        ("sync", config.sync),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")  # blank line between sections
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
