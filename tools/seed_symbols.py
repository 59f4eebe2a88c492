from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from eod_ingest.config import DB_URL_ENV
from eod_ingest.io.database import ensure_schema, get_engine, register_symbols


logger = logging.getLogger(__name__)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register symbols tracked by the EOD ingestion pipeline.")
    parser.add_argument("symbols", nargs="*", help="Symbols to register (e.g., RELIANCE.NS)")
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="Text file with one symbol per line; blank lines and # comments are ignored",
    )
    return parser.parse_args(argv)


def _read_symbol_file(path: Path) -> list[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [
        stripped
        for stripped in (line.split("#", 1)[0].strip() for line in lines)
        if stripped
    ]


def seed(symbols: Iterable[str]) -> int:
    database_url = os.getenv(DB_URL_ENV)
    if not database_url:
        raise RuntimeError(f"{DB_URL_ENV} is not set")
    engine = get_engine(database_url)
    try:
        ensure_schema(engine)
        return register_symbols(engine, symbols, datetime.now(UTC).date())
    finally:
        engine.dispose()


def main() -> None:
    args = _parse_args(sys.argv[1:])
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    symbols = list(args.symbols)
    if args.file is not None:
        symbols.extend(_read_symbol_file(args.file))
    if not symbols:
        logger.info("No symbols supplied; nothing to register")
        return
    seed(symbols)


if __name__ == "__main__":
    main()
