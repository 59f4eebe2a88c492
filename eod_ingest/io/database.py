from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable

from sqlalchemy import Engine, create_engine, event, text

from eod_ingest.domain.schemas import EodRecord
from eod_ingest.logic.normalize import parse_bar_date


logger = logging.getLogger(__name__)

RETRIEVAL_COLUMN = "retrieval_date"
SQLITE_BUSY_TIMEOUT_SECONDS = 30.0


def get_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine from a URL or a SQLite file path.

    Args:
        database_url (str): SQLAlchemy URL, or a filesystem path to a SQLite database.

    Returns:
        Engine: SQLAlchemy engine.
    """
    if "://" not in database_url:
        database_url = f"sqlite:///{database_url}"
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, future=True)
    engine = create_engine(
        database_url,
        future=True,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
    )
    _use_immediate_transactions(engine)
    return engine


def _use_immediate_transactions(engine: Engine) -> None:
    """Make SQLite transactions take the write lock at BEGIN.

    Deferred transactions that read before writing fail with "database is locked"
    when another connection writes first; BEGIN IMMEDIATE waits on the busy timeout.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection: object, connection_record: object) -> None:
        dbapi_connection.isolation_level = None  # type: ignore[attr-defined]

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: object) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")  # type: ignore[attr-defined]


def ensure_schema(engine: Engine) -> None:
    """Ensure the symbols and eod_prices tables exist.

    Args:
        engine (Engine): SQLAlchemy engine.

    Returns:
        None: Creates schema when missing.
    """
    schema_sql = """
    CREATE TABLE IF NOT EXISTS symbols (
        symbol TEXT NOT NULL,
        added_date TEXT NULL,
        PRIMARY KEY (symbol)
    );
    CREATE TABLE IF NOT EXISTS eod_prices (
        symbol TEXT NOT NULL,
        date TEXT NOT NULL,
        open DOUBLE PRECISION NULL,
        high DOUBLE PRECISION NULL,
        low DOUBLE PRECISION NULL,
        close DOUBLE PRECISION NULL,
        adj_close DOUBLE PRECISION NULL,
        volume BIGINT NULL,
        retrieval_date TEXT NOT NULL,
        provider TEXT NOT NULL,
        PRIMARY KEY (symbol, date)
    );
    CREATE INDEX IF NOT EXISTS IX_eod_prices_symbol_date
        ON eod_prices (symbol, date DESC);
    """
    with engine.begin() as conn:
        for statement in (stmt.strip() for stmt in schema_sql.split(";")):
            if statement:
                conn.exec_driver_sql(statement)


def run_database_preflight(engine: Engine) -> None:
    """Verify the database answers a trivial query."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1")).scalar()
    logger.debug("Database preflight query succeeded")


def get_symbols(engine: Engine) -> list[str]:
    """Return every tracked symbol.

    Args:
        engine (Engine): SQLAlchemy engine.

    Returns:
        list[str]: Symbols ordered alphabetically.
    """
    with engine.connect() as conn:
        rows = conn.execute(text("SELECT symbol FROM symbols ORDER BY symbol")).scalars().all()
    return [row for row in rows if isinstance(row, str) and row]


def register_symbols(
    engine: Engine,
    symbols: Iterable[str],
    added_date: date,
) -> int:
    """Add symbols to the tracked set, ignoring ones already present.

    Args:
        engine (Engine): SQLAlchemy engine.
        symbols (Iterable[str]): Symbols to track.
        added_date (date): Date recorded for newly added symbols.

    Returns:
        int: Number of symbols inserted.
    """
    rows = [
        {"symbol": symbol, "added_date": added_date.isoformat()}
        for symbol in dict.fromkeys(symbol.strip() for symbol in symbols)
        if symbol
    ]
    if not rows:
        return 0
    statement = text(
        """
        INSERT INTO symbols (symbol, added_date)
        VALUES (:symbol, :added_date)
        ON CONFLICT (symbol) DO NOTHING
        """
    )
    inserted = 0
    with engine.begin() as conn:
        for row in rows:
            inserted += conn.execute(statement, row).rowcount
    logger.info("Registered %d of %d symbols", inserted, len(rows))
    return inserted


def append_eod_if_absent(
    engine: Engine,
    symbol: str,
    record: EodRecord,
    retrieval_date: datetime,
    provider: str,
) -> bool:
    """Append a bar to a symbol's series unless that date is already stored.

    The existence and duplicate-date checks run inside the same INSERT statement,
    so overlapping runs cannot both write the same date.

    Args:
        engine (Engine): SQLAlchemy engine.
        symbol (str): Tracked symbol to append to.
        record (EodRecord): Normalized bar.
        retrieval_date (datetime): Timestamp of the run that fetched the bar.
        provider (str): Market data provider label.

    Returns:
        bool: True when the row was written, False for an unknown symbol or a duplicate date.
    """
    statement = text(
        """
        INSERT INTO eod_prices (
            symbol,
            date,
            open,
            high,
            low,
            close,
            adj_close,
            volume,
            retrieval_date,
            provider
        )
        SELECT
            CAST(:symbol AS TEXT),
            CAST(:date AS TEXT),
            CAST(:open AS DOUBLE PRECISION),
            CAST(:high AS DOUBLE PRECISION),
            CAST(:low AS DOUBLE PRECISION),
            CAST(:close AS DOUBLE PRECISION),
            CAST(:adj_close AS DOUBLE PRECISION),
            CAST(:volume AS BIGINT),
            CAST(:retrieval_date AS TEXT),
            CAST(:provider AS TEXT)
        WHERE EXISTS (SELECT 1 FROM symbols WHERE symbol = :symbol)
          AND NOT EXISTS (
              SELECT 1 FROM eod_prices WHERE symbol = :symbol AND date = :date
          )
        ON CONFLICT (symbol, date) DO NOTHING
        """
    )
    params = {
        "symbol": symbol,
        "date": record.date.isoformat(),
        "open": record.open,
        "high": record.high,
        "low": record.low,
        "close": record.close,
        "adj_close": record.adj_close,
        "volume": record.volume,
        RETRIEVAL_COLUMN: retrieval_date.isoformat(),
        "provider": provider,
    }
    with engine.begin() as conn:
        applied = conn.execute(statement, params).rowcount > 0
    if applied:
        logger.debug("Appended %s bar for %s", record.date, symbol)
    else:
        logger.debug("Skipped %s bar for %s; date present or symbol untracked", record.date, symbol)
    return applied


def get_symbol_series(engine: Engine, symbol: str) -> list[EodRecord]:
    """Load a symbol's stored bars, newest first.

    Args:
        engine (Engine): SQLAlchemy engine.
        symbol (str): Symbol to load.

    Returns:
        list[EodRecord]: Stored bars in descending date order.
    """
    query = text(
        """
        SELECT date, open, high, low, close, adj_close, volume
        FROM eod_prices
        WHERE symbol = :symbol
        ORDER BY date DESC
        """
    )
    with engine.connect() as conn:
        rows = conn.execute(query, {"symbol": symbol}).mappings().all()
    records = []
    for row in rows:
        row_date = parse_bar_date(row["date"])
        if row_date is None:
            logger.warning("Ignoring stored %s bar with invalid date %s", symbol, row["date"])
            continue
        records.append(
            EodRecord(
                date=row_date,
                open=row["open"],
                high=row["high"],
                low=row["low"],
                close=row["close"],
                adj_close=row["adj_close"],
                volume=row["volume"],
            )
        )
    return records
