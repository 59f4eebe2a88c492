from __future__ import annotations

"""Postgres integration tests for the conditional append."""

import os
import threading
import uuid
from datetime import UTC, date, datetime

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from eod_ingest.domain.schemas import EodRecord
from eod_ingest.io.database import (
    append_eod_if_absent,
    ensure_schema,
    get_symbol_series,
    register_symbols,
)


def _get_engine() -> Engine:
    """Return a Postgres engine for integration tests."""
    database_url = os.getenv("EOD_INGEST_TEST_PG_URL")
    if not database_url:
        pytest.skip("EOD_INGEST_TEST_PG_URL not set; skipping Postgres integration tests")
    engine = create_engine(database_url, future=True)
    if engine.dialect.name != "postgresql":
        pytest.skip("EOD_INGEST_TEST_PG_URL is not a Postgres URL")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        pytest.skip(f"EOD_INGEST_TEST_PG_URL unavailable; skipping Postgres tests: {exc}")
    ensure_schema(engine)
    return engine


def _unique_symbol(prefix: str) -> str:
    """Build a unique ticker symbol for database tests."""
    return f"{prefix}{uuid.uuid4().hex[:6].upper()}.NS"


def test_conditional_append_on_postgres() -> None:
    engine = _get_engine()
    symbol = _unique_symbol("PG")
    register_symbols(engine, [symbol], date(2024, 4, 1))
    retrieval = datetime(2024, 5, 2, tzinfo=UTC)
    older = EodRecord(date=date(2024, 4, 30), close=1.0, volume=0)
    newer = EodRecord(date=date(2024, 5, 1), close=2.0)

    assert append_eod_if_absent(engine, symbol, newer, retrieval, "yahoo") is True
    assert append_eod_if_absent(engine, symbol, older, retrieval, "yahoo") is True
    assert append_eod_if_absent(engine, symbol, newer, retrieval, "yahoo") is False
    assert append_eod_if_absent(engine, _unique_symbol("NO"), newer, retrieval, "yahoo") is False

    assert get_symbol_series(engine, symbol) == [newer, older]


def test_overlapping_appends_write_one_row_on_postgres() -> None:
    """Concurrent appends of the same date should apply exactly once."""
    engine = _get_engine()
    symbol = _unique_symbol("RACE")
    register_symbols(engine, [symbol], date(2024, 4, 1))
    record = EodRecord(date=date(2024, 5, 1), close=10.0)
    retrieval = datetime(2024, 5, 2, tzinfo=UTC)
    barrier = threading.Barrier(4)
    results: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        applied = append_eod_if_absent(engine, symbol, record, retrieval, "yahoo")
        with lock:
            results.append(applied)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False, False, False, True]
    assert get_symbol_series(engine, symbol) == [record]
