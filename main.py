from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import Future
from datetime import UTC, date, datetime, timedelta
from functools import partial
from pathlib import Path
from typing import Iterable

from more_itertools import first
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm  # type: ignore[import-untyped]

from eod_ingest.config import ConfigurationError, PipelineConfig, load_pipeline_config
from eod_ingest.domain.schemas import RunSummary, TaskOutcome
from eod_ingest.io.database import (
    append_eod_if_absent,
    ensure_schema,
    get_engine,
    get_symbols,
    run_database_preflight,
)
from eod_ingest.io.market_data import FetchError, MarketDataClient, build_client
from eod_ingest.logic.normalize import normalize_bar
from eod_ingest.logic.scheduler import RateLimitedScheduler
from eod_ingest.logic.validation import validate_bar_payload


logger = logging.getLogger(__name__)


def _normalize_symbols(symbols: Iterable[str]) -> list[str]:
    """Normalize symbol inputs into a list of non-empty strings."""
    return [symbol for symbol in (symbol.strip() for symbol in symbols) if symbol]


def _parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments for the ingestion runner."""
    parser = argparse.ArgumentParser(description="End-of-day price ingestion runner")
    subparsers = parser.add_subparsers(dest="command")
    run_parser = subparsers.add_parser("run", help="Fetch the newest daily bar for tracked symbols.")
    run_parser.add_argument("--config", type=Path, default=None, help="Path to a config.toml file")
    run_parser.add_argument(
        "--symbols",
        nargs="*",
        default=[],
        help="Restrict the pass to these tracked symbols (e.g., RELIANCE.NS)",
    )
    if not argv or argv[0] != "run":
        argv = ["run", *argv]
    return parser.parse_args(argv)


def request_window(today: date) -> tuple[date, date]:
    """Return the one-day request window ``[today, today + 1 day)``."""
    return today, today + timedelta(days=1)


def process_symbol(
    symbol: str,
    client: MarketDataClient,
    engine: Engine,
    today: date,
    retrieval_date: datetime,
) -> TaskOutcome:
    """Fetch, normalize and append the newest daily bar for one symbol.

    Args:
        symbol (str): Tracked symbol to update.
        client (MarketDataClient): Market data client.
        engine (Engine): SQLAlchemy engine for the store.
        today (date): Calendar date of the run.
        retrieval_date (datetime): Timestamp recorded with appended bars.

    Returns:
        TaskOutcome: Updated, no new data, or failed with a reason.
    """
    start_date, end_date = request_window(today)
    try:
        bars = client.fetch_daily_bars(symbol, start_date, end_date)
    except FetchError as exc:
        logger.warning("Error for %s: %s", symbol, exc)
        return TaskOutcome(symbol=symbol, status="failed", reason=str(exc))
    latest_bar = first(bars, None)
    if latest_bar is None:
        logger.debug("No bars returned for %s between %s and %s", symbol, start_date, end_date)
        return TaskOutcome(symbol=symbol, status="no_new_data", reason="no_bars")
    record = normalize_bar(latest_bar)
    if record is None:
        logger.debug("Latest bar for %s has no usable date", symbol)
        return TaskOutcome(symbol=symbol, status="no_new_data", reason="no_date")
    warnings = validate_bar_payload(latest_bar)
    if warnings:
        logger.debug("Bar for %s stored with absent fields: %s", symbol, warnings)
    try:
        applied = append_eod_if_absent(
            engine=engine,
            symbol=symbol,
            record=record,
            retrieval_date=retrieval_date,
            provider=client.provider,
        )
    except SQLAlchemyError as exc:
        logger.warning("Error for %s: %s", symbol, exc)
        return TaskOutcome(symbol=symbol, status="failed", reason=str(exc))
    if not applied:
        return TaskOutcome(symbol=symbol, status="no_new_data", reason="already_recorded")
    return TaskOutcome(symbol=symbol, status="updated", record=record)


def _init_engine(config: PipelineConfig) -> Engine:
    """Create the store engine and run preflight checks."""
    engine = get_engine(config.database_url)
    logger.info("Starting preflight checks")
    try:
        ensure_schema(engine)
        run_database_preflight(engine)
    except Exception:
        engine.dispose()
        raise
    logger.info("Connected to database.")
    return engine


def _collect_outcome(symbol: str, future: Future[TaskOutcome]) -> TaskOutcome:
    """Turn a finished task future into an outcome, mapping exceptions to failures."""
    exc = future.exception()
    if exc is None:
        return future.result()
    logger.warning("Error for %s: %s", symbol, exc)
    return TaskOutcome(symbol=symbol, status="failed", reason=str(exc))


def run_ingestion_pipeline(
    config: PipelineConfig,
    engine: Engine | None = None,
    client: MarketDataClient | None = None,
    today: date | None = None,
    retrieval_date: datetime | None = None,
    symbols: list[str] | None = None,
) -> RunSummary:
    """Run one ingestion pass over the tracked symbols.

    Args:
        config (PipelineConfig): Pipeline settings.
        engine (Engine | None): Store engine; created from the config when omitted.
        client (MarketDataClient | None): Market data client; created from the config when omitted.
        today (date | None): Calendar date of the run, defaults to the UTC date.
        retrieval_date (datetime | None): Run timestamp, defaults to now (UTC).
        symbols (list[str] | None): Optional subset of tracked symbols to process.

    Returns:
        RunSummary: Outcome counts for the pass.
    """
    logger.info("Starting EOD ingestion pipeline")
    owns_engine = engine is None
    if engine is None:
        engine = _init_engine(config)
    try:
        if client is None:
            client = build_client(config)
        if retrieval_date is None:
            retrieval_date = datetime.now(UTC)
        if today is None:
            today = retrieval_date.date()
        tracked = get_symbols(engine)
        if symbols:
            requested = set(symbols)
            missing = sorted(requested.difference(tracked))
            if missing:
                logger.warning("Ignoring untracked symbols: %s", missing)
            tracked = [symbol for symbol in tracked if symbol in requested]
        if not tracked:
            logger.info("No symbols found.")
            summary = RunSummary()
            logger.info(summary.describe())
            return summary
        logger.info("Processing %d symbols...", len(tracked))
        logger.debug(
            "Scheduler settings: concurrency=%d interval_cap=%d interval=%.3fs",
            config.concurrency,
            config.interval_cap,
            config.interval_seconds,
        )
        task = partial(
            process_symbol,
            client=client,
            engine=engine,
            today=today,
            retrieval_date=retrieval_date,
        )
        progress = tqdm(
            total=len(tracked),
            desc="EOD ingest",
            unit="symbol",
            ascii=True,
            disable=not sys.stderr.isatty(),
        )
        futures: list[tuple[str, Future[TaskOutcome]]] = []
        with progress, RateLimitedScheduler(
            concurrency=config.concurrency,
            interval_cap=config.interval_cap,
            interval=config.interval_seconds,
        ) as scheduler:
            for symbol in tracked:
                future = scheduler.submit(partial(task, symbol))
                future.add_done_callback(lambda _future: progress.update(1))
                futures.append((symbol, future))
            scheduler.wait_idle()
        outcomes = [_collect_outcome(symbol, future) for symbol, future in futures]
        summary = RunSummary.from_outcomes(outcomes)
        logger.info(summary.describe())
        return summary
    finally:
        if owns_engine:
            engine.dispose()


def _ensure_results_root() -> tuple[Path, bool]:
    """Ensure the root results directory exists.

    Returns:
        tuple[Path, bool]: Results path and whether it was created.
    """
    results_root = Path(__file__).resolve().parent / "results"
    results_created = not results_root.exists()
    results_root.mkdir(parents=True, exist_ok=True)
    return results_root, results_created


def _build_results_dir(results_root: Path) -> Path:
    """Create a timestamped results directory for the current run.

    Args:
        results_root (Path): Base directory for run outputs.

    Returns:
        Path: Directory path for this run's outputs.
    """
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    run_dir = results_root / timestamp
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def _configure_logging(log_path: Path) -> None:
    """Log INFO to the console and DEBUG to the per-run log file."""
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    logging.basicConfig(level=logging.DEBUG, handlers=[console_handler, file_handler])
    logging.getLogger("urllib3").setLevel(logging.INFO)


def main(argv: list[str]) -> int:
    """Run the CLI and return the process exit code."""
    args = _parse_args(argv)
    try:
        config = load_pipeline_config(path=args.config)
    except ConfigurationError as exc:
        logger.error("Configuration error; aborting pipeline: %s", exc)
        return 1
    try:
        run_ingestion_pipeline(config, symbols=_normalize_symbols(args.symbols))
    except ConfigurationError as exc:
        logger.error("Configuration error; aborting pipeline: %s", exc)
        return 1
    except SQLAlchemyError as exc:
        logger.exception("Database setup failed; aborting pipeline: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    results_root, results_created = _ensure_results_root()
    results_dir = _build_results_dir(results_root)
    _configure_logging(results_dir / "run.log")
    if results_created:
        logger.info("Created results directory: %s", results_root)
    logger.info("Run output directory: %s", results_dir)
    sys.exit(main(sys.argv[1:]))
