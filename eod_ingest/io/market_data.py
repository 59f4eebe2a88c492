from __future__ import annotations

"""Market data clients for daily bars (network I/O happens here)."""

import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, Mapping, Protocol

import requests  # type: ignore[import-untyped]

from eod_ingest.config import ConfigurationError, PipelineConfig


logger = logging.getLogger(__name__)

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
EODHD_EOD_URL = "https://eodhd.com/api/eod/{symbol}"
USER_AGENT = "Mozilla/5.0 (compatible; eod-ingest/0.1)"


class FetchError(RuntimeError):
    """Raised when a market data request fails for one symbol."""

    def __init__(self, message: str, error_code: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.http_status = http_status


class MarketDataClient(Protocol):
    provider: str

    def fetch_daily_bars(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, object]]:
        """Return raw daily bars for ``[start_date, end_date)``."""
        ...


def _get_json(
    session: requests.Session,
    url: str,
    params: Mapping[str, str],
    timeout: float,
) -> object:
    """Issue a GET request and decode the JSON body, mapping failures to FetchError."""
    try:
        response = session.get(url, params=dict(params), timeout=timeout)
        response.raise_for_status()
        return response.json()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        raise FetchError(str(exc), "http_error", status) from exc
    except ValueError as exc:
        # requests.JSONDecodeError is both a ValueError and a RequestException
        raise FetchError(f"Failed to decode JSON: {exc}", "decode_error") from exc
    except requests.RequestException as exc:
        status = exc.response.status_code if exc.response is not None else None
        raise FetchError(str(exc), "request_error", status) from exc


class YahooChartClient:
    """Daily bars from the Yahoo Finance chart endpoint."""

    provider = "yahoo"

    def __init__(self, session: requests.Session | None = None, timeout: float = 30.0) -> None:
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._timeout = timeout

    def fetch_daily_bars(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, object]]:
        """Fetch daily bars for a symbol.

        Args:
            symbol (str): Ticker symbol (e.g., RELIANCE.NS).
            start_date (date): First calendar date of the window.
            end_date (date): Exclusive end of the window.

        Returns:
            list[dict[str, object]]: Raw bars, oldest first.

        Raises:
            FetchError: When the request fails or the payload is malformed.
        """
        params = {
            "period1": str(_epoch_seconds(start_date)),
            "period2": str(_epoch_seconds(end_date)),
            "interval": "1d",
            "events": "history",
        }
        logger.debug("Fetching Yahoo chart for %s from %s to %s", symbol, start_date, end_date)
        payload = _get_json(
            self._session,
            YAHOO_CHART_URL.format(symbol=symbol),
            params,
            self._timeout,
        )
        return parse_chart_payload(payload)


def parse_chart_payload(payload: object) -> list[dict[str, object]]:
    """Flatten a Yahoo chart payload into raw bars.

    Args:
        payload (object): Decoded chart JSON.

    Returns:
        list[dict[str, object]]: Raw bars keyed by date, open, high, low, close, adjClose, volume.

    Raises:
        FetchError: When the payload reports an error or has an unexpected shape.
    """
    chart = payload.get("chart") if isinstance(payload, Mapping) else None
    if not isinstance(chart, Mapping):
        raise FetchError("Chart response did not return a chart object", "payload_error")
    if chart.get("error"):
        raise FetchError(str(chart["error"]), "provider_error")
    results = chart.get("result")
    if not results:
        return []
    result = results[0] if isinstance(results, list) else None
    if not isinstance(result, Mapping):
        raise FetchError("Chart result is not an object", "payload_error")
    timestamps = result.get("timestamp") or []
    meta = result.get("meta") if isinstance(result.get("meta"), Mapping) else {}
    gmtoffset = meta.get("gmtoffset") if isinstance(meta.get("gmtoffset"), int) else 0
    indicators = result.get("indicators") if isinstance(result.get("indicators"), Mapping) else {}
    quote = _first_block(indicators.get("quote"))
    adjclose = _first_block(indicators.get("adjclose"))
    bars: list[dict[str, object]] = []
    for index, timestamp in enumerate(timestamps):
        if not isinstance(timestamp, (int, float)):
            continue
        bars.append(
            {
                "date": datetime.fromtimestamp(timestamp + gmtoffset, tz=UTC).date(),
                "open": _series_value(quote, "open", index),
                "high": _series_value(quote, "high", index),
                "low": _series_value(quote, "low", index),
                "close": _series_value(quote, "close", index),
                "adjClose": _series_value(adjclose, "adjclose", index),
                "volume": _series_value(quote, "volume", index),
            }
        )
    return bars


class EodhdClient:
    """Daily bars from the EODHD end-of-day endpoint."""

    provider = "eodhd"

    def __init__(
        self,
        api_key: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._session = session or requests.Session()
        self._timeout = timeout

    def fetch_daily_bars(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, object]]:
        """Fetch daily bars for a symbol; EODHD treats ``to`` as inclusive."""
        last_date = max(start_date, end_date - timedelta(days=1))
        params = {
            "api_token": self._api_key,
            "fmt": "json",
            "period": "d",
            "from": start_date.isoformat(),
            "to": last_date.isoformat(),
        }
        logger.debug("Fetching EODHD bars for %s from %s to %s", symbol, start_date, last_date)
        payload = _get_json(
            self._session,
            EODHD_EOD_URL.format(symbol=symbol),
            params,
            self._timeout,
        )
        if isinstance(payload, dict) and any(key in payload for key in ("Error", "error", "message")):
            raise FetchError(str(payload), "provider_error")
        if not isinstance(payload, list):
            raise FetchError("Prices response did not return JSON rows", "payload_error")
        return [dict(entry) for entry in payload if isinstance(entry, Mapping)]


def build_client(config: PipelineConfig, session: requests.Session | None = None) -> MarketDataClient:
    """Create the market data client selected by the configuration."""
    if config.provider == "eodhd":
        if not config.api_key:
            raise ConfigurationError("EODHD client requires an API key")
        return EodhdClient(config.api_key, session=session, timeout=config.request_timeout)
    return YahooChartClient(session=session, timeout=config.request_timeout)


def _epoch_seconds(value: date) -> int:
    """Return UTC midnight of a calendar date as epoch seconds."""
    return int(datetime.combine(value, time.min, tzinfo=UTC).timestamp())


def _first_block(value: object) -> Mapping[str, Any]:
    """Return the first mapping of an indicator list, or an empty mapping."""
    if isinstance(value, list) and value and isinstance(value[0], Mapping):
        return value[0]
    return {}


def _series_value(block: Mapping[str, Any], key: str, index: int) -> object:
    """Return the value at ``index`` of an indicator series, if present."""
    series = block.get(key)
    if isinstance(series, list) and index < len(series):
        return series[index]
    return None
