from __future__ import annotations

"""Tests for configuration loading."""

import logging
from pathlib import Path

import pytest

from eod_ingest.config import (
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT,
    MAX_CONCURRENCY,
    ConfigurationError,
    PipelineConfig,
    load_pipeline_config,
)


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(body, encoding="utf-8")
    return path


def test_missing_database_url_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="EOD_INGEST_DB_URL"):
        load_pipeline_config(env={}, path=tmp_path / "missing.toml")


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = load_pipeline_config(
        env={"EOD_INGEST_DB_URL": "sqlite:///eod.sqlite"},
        path=tmp_path / "missing.toml",
    )

    assert config == PipelineConfig(database_url="sqlite:///eod.sqlite")
    assert config.concurrency == 1
    assert config.interval_cap == 1
    assert config.interval_seconds == 1.0


def test_config_file_values_are_used(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        """
        [ingest]
        provider = "eodhd"
        concurrency = 2
        interval_cap = 5
        interval_seconds = "0.5"
        request_timeout = 10
        """,
    )

    config = load_pipeline_config(
        env={"EOD_INGEST_DB_URL": "eod.sqlite", "EODHD_API_KEY": "demo"},
        path=path,
    )

    assert config.provider == "eodhd"
    assert config.api_key == "demo"
    assert config.concurrency == 2
    assert config.interval_cap == 5
    assert config.interval_seconds == 0.5
    assert config.request_timeout == 10.0


def test_environment_overrides_provider(tmp_path: Path) -> None:
    path = _write_config(tmp_path, '[ingest]\nprovider = "eodhd"\n')

    config = load_pipeline_config(
        env={"EOD_INGEST_DB_URL": "eod.sqlite", "EOD_INGEST_PROVIDER": "Yahoo"},
        path=path,
    )

    assert config.provider == "yahoo"


def test_eodhd_requires_api_key(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="EODHD_API_KEY"):
        load_pipeline_config(
            env={"EOD_INGEST_DB_URL": "eod.sqlite", "EOD_INGEST_PROVIDER": "eodhd"},
            path=tmp_path / "missing.toml",
        )


def test_unknown_provider_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Unsupported"):
        load_pipeline_config(
            env={"EOD_INGEST_DB_URL": "eod.sqlite", "EOD_INGEST_PROVIDER": "bloomberg"},
            path=tmp_path / "missing.toml",
        )


def test_out_of_range_values_are_clamped(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    path = _write_config(
        tmp_path,
        """
        [ingest]
        concurrency = 500
        interval_cap = 0
        interval_seconds = -3
        request_timeout = "soon"
        """,
    )

    config = load_pipeline_config(env={"EOD_INGEST_DB_URL": "eod.sqlite"}, path=path)

    assert config.concurrency == MAX_CONCURRENCY
    assert config.interval_cap == 1
    assert config.interval_seconds == 0.0
    assert config.request_timeout == DEFAULT_REQUEST_TIMEOUT
    assert any("exceeds max" in rec.message for rec in caplog.records)
    assert any("interval_cap of 0 is invalid" in rec.message for rec in caplog.records)


def test_non_finite_values_fall_back_to_defaults(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    path = _write_config(
        tmp_path,
        """
        [ingest]
        concurrency = nan
        interval_cap = inf
        interval_seconds = nan
        request_timeout = inf
        """,
    )

    config = load_pipeline_config(env={"EOD_INGEST_DB_URL": "eod.sqlite"}, path=path)

    assert config.concurrency == 1
    assert config.interval_cap == 1
    assert config.interval_seconds == DEFAULT_INTERVAL_SECONDS
    assert config.request_timeout == DEFAULT_REQUEST_TIMEOUT
    messages = [rec.message for rec in caplog.records]
    assert any(message.startswith("interval_seconds of nan") for message in messages)
    assert any(message.startswith("request_timeout of inf") for message in messages)
