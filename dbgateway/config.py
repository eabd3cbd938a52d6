"""Gateway configuration loading helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import tomllib
from pydantic import BaseModel, Field, ValidationError

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "dbgateway" / "config.toml"
STATE_FILE = Path.home() / ".local" / "state" / "dbgateway" / "state.json"
INDEX_FILE = Path.home() / ".local" / "state" / "dbgateway" / "index.jsonl"


class PoolSettings(BaseModel):
    """Pool sizing and timeout policy shared by every driver."""

    max_size: int = Field(default=20, ge=1)
    idle_timeout: float = Field(default=30.0, gt=0)
    connect_timeout: float = Field(default=5.0, gt=0)
    statement_timeout: float = Field(default=30.0, gt=0)


class SyncSettings(BaseModel):
    """Introspection and sync pass tuning."""

    batch_size: int = Field(default=5, ge=1)
    sample_limit: int = Field(default=1000, ge=1)
    document_sample_size: int = Field(default=100, ge=1)
    document_schema_mode: Literal["first", "union"] = "first"


class ChunkSettings(BaseModel):
    """Chunk budget and ingestion batching."""

    byte_budget: int = Field(default=4000, ge=1)
    ingestion_batch_size: int = Field(default=10, ge=1)


class GatewayConfig(BaseModel):
    """Shape of the gateway configuration file."""

    log_level: str = "INFO"
    state_file: Path = STATE_FILE
    index_file: Path = INDEX_FILE
    pool: PoolSettings = Field(default_factory=PoolSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    chunking: ChunkSettings = Field(default_factory=ChunkSettings)

    def with_overrides(self, **updates: object) -> GatewayConfig:
        """Return a copy with top-level values replaced (None values ignored)."""

        changes = {key: value for key, value in updates.items() if value is not None}
        return self.model_copy(update=changes)


def load_config(path: Path | None = None) -> GatewayConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return GatewayConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file", extra={"error": str(exc)})
        return GatewayConfig()

    try:
        return GatewayConfig.model_validate(data)
    except ValidationError as exc:
        LOG.warning("Ignoring invalid config file", extra={"error": str(exc)})
        return GatewayConfig()


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    log_level = raw.get("log_level")
    if isinstance(log_level, str):
        data["log_level"] = log_level.upper()
    for key in ("state_file", "index_file"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = Path(value).expanduser()
    for section in ("pool", "sync", "chunking"):
        value = raw.get(section)
        if isinstance(value, dict):
            data[section] = value
    return data


__all__ = [
    "CONFIG_FILE",
    "ChunkSettings",
    "GatewayConfig",
    "PoolSettings",
    "SyncSettings",
    "load_config",
]
