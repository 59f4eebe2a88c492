from __future__ import annotations

"""Validation helpers for provider bar payloads."""

from typing import Mapping

from eod_ingest.logic.normalize import ADJ_CLOSE_KEYS, to_float, to_int


PRICE_FIELDS = ("open", "high", "low", "close")


def validate_bar_payload(raw_bar: Mapping[str, object]) -> list[str]:
    """Collect warnings for fields that will be stored as absent.

    Args:
        raw_bar (Mapping[str, object]): Raw provider bar.

    Returns:
        list[str]: Human-readable validation warnings.
    """
    warnings = [
        *([] if raw_bar.get("date") is not None else ["Missing date"]),
        *(
            f"Missing or non-numeric {field}"
            for field in PRICE_FIELDS
            if to_float(raw_bar.get(field)) is None
        ),
    ]
    if not any(to_float(raw_bar.get(key)) is not None for key in ADJ_CLOSE_KEYS):
        warnings.append("Missing or non-numeric adjusted close")
    if to_int(raw_bar.get("volume")) is None:
        warnings.append("Missing or non-numeric volume")
    return warnings
