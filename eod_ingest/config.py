from __future__ import annotations

"""Configuration loader for the ingestion pipeline."""

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import tomllib


logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "yahoo"
SUPPORTED_PROVIDERS = ("yahoo", "eodhd")
DEFAULT_CONCURRENCY = 1
DEFAULT_INTERVAL_CAP = 1
DEFAULT_INTERVAL_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0
MAX_CONCURRENCY = 16

DB_URL_ENV = "EOD_INGEST_DB_URL"
PROVIDER_ENV = "EOD_INGEST_PROVIDER"
EODHD_API_KEY_ENV = "EODHD_API_KEY"

_CONFIG_CACHE: dict[str, Any] | None = None


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing or invalid."""


@dataclass(frozen=True)
class PipelineConfig:
    """Settings for one ingestion pass."""

    database_url: str
    provider: str = DEFAULT_PROVIDER
    api_key: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY
    interval_cap: int = DEFAULT_INTERVAL_CAP
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from the repository root config file.

    Args:
        path (Path | None): Explicit config path; bypasses the cache when given.

    Returns:
        dict[str, Any]: Parsed configuration values.
    """
    global _CONFIG_CACHE
    if path is not None:
        return tomllib.loads(path.read_text(encoding="utf-8")) if path.exists() else {}
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE
    config_path = Path(__file__).resolve().parents[1] / "config.toml"
    _CONFIG_CACHE = (
        tomllib.loads(config_path.read_text(encoding="utf-8")) if config_path.exists() else {}
    )
    return _CONFIG_CACHE


def load_pipeline_config(
    env: Mapping[str, str] | None = None,
    path: Path | None = None,
) -> PipelineConfig:
    """Build the pipeline configuration from the config file and environment.

    Args:
        env (Mapping[str, str] | None): Environment mapping, defaults to os.environ.
        path (Path | None): Optional config file path.

    Returns:
        PipelineConfig: Resolved settings.

    Raises:
        ConfigurationError: When the database URL or provider credentials are missing.
    """
    env = os.environ if env is None else env
    config = load_config(path)
    ingest = config.get("ingest", {}) if isinstance(config, dict) else {}
    if not isinstance(ingest, dict):
        ingest = {}

    database_url = (env.get(DB_URL_ENV) or "").strip()
    if not database_url:
        raise ConfigurationError(f"{DB_URL_ENV} is required but not set")

    provider = str(env.get(PROVIDER_ENV) or ingest.get("provider") or DEFAULT_PROVIDER)
    provider = provider.strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(
            f"Unsupported market data provider '{provider}'; expected one of {SUPPORTED_PROVIDERS}"
        )
    api_key = (env.get(EODHD_API_KEY_ENV) or "").strip() or None
    if provider == "eodhd" and api_key is None:
        raise ConfigurationError(f"{EODHD_API_KEY_ENV} is required for the eodhd provider")

    concurrency = _clamp(
        "concurrency",
        _coerce_int(ingest.get("concurrency"), DEFAULT_CONCURRENCY),
        1,
        MAX_CONCURRENCY,
    )
    interval_cap = _coerce_int(ingest.get("interval_cap"), DEFAULT_INTERVAL_CAP)
    if interval_cap < 1:
        logger.warning("interval_cap of %d is invalid; using 1", interval_cap)
        interval_cap = 1
    interval_seconds = _coerce_float(ingest.get("interval_seconds"), DEFAULT_INTERVAL_SECONDS)
    if not math.isfinite(interval_seconds):
        logger.warning(
            "interval_seconds of %s is invalid; using %s",
            interval_seconds,
            DEFAULT_INTERVAL_SECONDS,
        )
        interval_seconds = DEFAULT_INTERVAL_SECONDS
    elif interval_seconds < 0:
        logger.warning("interval_seconds of %s is invalid; using 0", interval_seconds)
        interval_seconds = 0.0
    request_timeout = _coerce_float(ingest.get("request_timeout"), DEFAULT_REQUEST_TIMEOUT)
    if not math.isfinite(request_timeout) or request_timeout <= 0:
        logger.warning(
            "request_timeout of %s is invalid; using %s",
            request_timeout,
            DEFAULT_REQUEST_TIMEOUT,
        )
        request_timeout = DEFAULT_REQUEST_TIMEOUT
    return PipelineConfig(
        database_url=database_url,
        provider=provider,
        api_key=api_key,
        concurrency=concurrency,
        interval_cap=interval_cap,
        interval_seconds=interval_seconds,
        request_timeout=request_timeout,
    )


def _clamp(name: str, value: int, lower: int, upper: int) -> int:
    """Clamp an integer setting into range, warning when it changes."""
    if value < lower:
        logger.warning("%s of %d is invalid; using %d", name, value, lower)
        return lower
    if value > upper:
        logger.warning("%s of %d exceeds max %d; using %d", name, value, upper, upper)
        return upper
    return value


def _coerce_float(value: object, default: float) -> float:
    """Coerce a value to float with a default fallback.

    Args:
        value (object): Raw value to convert.
        default (float): Default to return on error.

    Returns:
        float: Parsed float or default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _coerce_int(value: object, default: int) -> int:
    """Coerce a value to int with a default fallback."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else default
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default
