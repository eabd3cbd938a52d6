"""Tests for GatewayConfig helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from dbgateway import config as config_module
from dbgateway.config import GatewayConfig, load_config


def test_defaults_match_pool_and_chunk_policy() -> None:
    config = GatewayConfig()

    assert config.pool.max_size == 20
    assert config.pool.idle_timeout == 30.0
    assert config.sync.batch_size == 5
    assert config.sync.sample_limit == 1000
    assert config.sync.document_schema_mode == "first"
    assert config.chunking.byte_budget == 4000
    assert config.chunking.ingestion_batch_size == 10


def test_load_config_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.toml")

    result = load_config()

    assert result == GatewayConfig()


def test_load_config_reads_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
log_level = "debug"
state_file = "~/gateway/state.json"

[pool]
max_size = 4
connect_timeout = 2.5

[sync]
batch_size = 3
document_schema_mode = "union"

[chunking]
byte_budget = 512
"""
    )

    result = load_config(config_path)

    assert result.log_level == "DEBUG"
    assert result.state_file == Path("~/gateway/state.json").expanduser()
    assert result.pool.max_size == 4
    assert result.pool.connect_timeout == 2.5
    assert result.pool.idle_timeout == 30.0
    assert result.sync.batch_size == 3
    assert result.sync.document_schema_mode == "union"
    assert result.chunking.byte_budget == 512


def test_load_config_handles_toml_errors(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("log_level = [unterminated")

    result = load_config(config_path)

    assert result == GatewayConfig()


def test_load_config_ignores_invalid_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[pool]\nmax_size = 0\n")

    result = load_config(config_path)

    assert result.pool.max_size == 20


def test_with_overrides_skips_none() -> None:
    config = GatewayConfig()

    updated = config.with_overrides(log_level="WARNING", state_file=None)

    assert updated.log_level == "WARNING"
    assert updated.state_file == config.state_file
