from __future__ import annotations

from datetime import date
from pathlib import Path
import sys
from typing import Callable, Iterator

import pytest
from sqlalchemy.engine import Engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from eod_ingest.config import PipelineConfig  # noqa: E402
from eod_ingest.io.database import ensure_schema, get_engine, register_symbols  # noqa: E402
from eod_ingest.io.market_data import FetchError  # noqa: E402


class FakeMarketDataClient:
    """In-memory market data client keyed by symbol."""

    provider = "fake"

    def __init__(
        self,
        bars: dict[str, list[dict[str, object]]] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.bars = bars or {}
        self.failures = failures or {}
        self.calls: list[tuple[str, date, date]] = []

    def fetch_daily_bars(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, object]]:
        self.calls.append((symbol, start_date, end_date))
        if symbol in self.failures:
            raise self.failures[symbol]
        return list(self.bars.get(symbol, []))


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    """Return a SQLite engine with the ingestion schema in place."""
    sqlite_engine = get_engine(str(tmp_path / "eod.sqlite"))
    ensure_schema(sqlite_engine)
    yield sqlite_engine
    sqlite_engine.dispose()


@pytest.fixture
def seed_symbols(engine: Engine) -> Callable[..., int]:
    """Register symbols in the test store."""

    def _seed(*symbols: str) -> int:
        return register_symbols(engine, symbols, date(2024, 4, 1))

    return _seed


@pytest.fixture
def fast_config(tmp_path: Path) -> PipelineConfig:
    """Pipeline config without rate-limit delays."""
    return PipelineConfig(
        database_url=str(tmp_path / "eod.sqlite"),
        provider="yahoo",
        concurrency=1,
        interval_cap=1,
        interval_seconds=0.0,
    )


@pytest.fixture
def network_error() -> FetchError:
    return FetchError("Connection reset by peer", "request_error")


@pytest.fixture
def make_client() -> type[FakeMarketDataClient]:
    """Return the fake market data client class."""
    return FakeMarketDataClient
