from __future__ import annotations

"""Normalize raw provider bars into canonical EOD records."""

import logging
import math
from datetime import date, datetime
from typing import Mapping

from eod_ingest.domain.schemas import EodRecord


logger = logging.getLogger(__name__)

ADJ_CLOSE_KEYS = ("adjClose", "adjclose", "adj_close", "adjusted_close", "adjustedClose")


def normalize_bar(raw_bar: Mapping[str, object]) -> EodRecord | None:
    """Convert a raw provider bar into an EodRecord.

    Each numeric field is parsed on its own; a field that cannot be parsed is
    stored as None while the rest of the record is kept.

    Args:
        raw_bar (Mapping[str, object]): Raw bar with date, OHLC, adjusted close and volume.

    Returns:
        EodRecord | None: Normalized record, or None when the bar has no usable date.
    """
    bar_date = parse_bar_date(raw_bar.get("date"))
    if bar_date is None:
        logger.debug("Bar has no parseable date: %s", raw_bar.get("date"))
        return None
    adj_close = next(
        (raw_bar.get(key) for key in ADJ_CLOSE_KEYS if raw_bar.get(key) is not None),
        None,
    )
    return EodRecord(
        date=bar_date,
        open=to_float(raw_bar.get("open")),
        high=to_float(raw_bar.get("high")),
        low=to_float(raw_bar.get("low")),
        close=to_float(raw_bar.get("close")),
        adj_close=to_float(adj_close),
        volume=to_int(raw_bar.get("volume")),
    )


def to_float(value: object) -> float | None:
    """Convert a provider value to a finite float when possible.

    Args:
        value (object): Raw value to convert.

    Returns:
        float | None: Parsed float, or None for missing, non-numeric, NaN or infinite input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            parsed = float(stripped)
        except ValueError:
            return None
    else:
        return None
    return parsed if math.isfinite(parsed) else None


def to_int(value: object) -> int | None:
    """Convert a provider volume to int, truncating fractional input."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        try:
            return int(stripped)
        except ValueError:
            pass
    parsed = to_float(value)
    return int(parsed) if parsed is not None else None


def parse_bar_date(value: object) -> date | None:
    """Parse a bar date from date, datetime or ISO string values.

    Args:
        value (object): Raw date value.

    Returns:
        date | None: Calendar date if parseable.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        try:
            return date.fromisoformat(stripped)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(stripped).date()
        except ValueError:
            return None
    return None
