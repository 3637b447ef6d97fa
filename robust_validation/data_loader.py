"""
Dataset Loader - OHLCV JSON normalization

Normalizes heterogeneous OHLCV JSON files into ordered, deduplicated bars.

Purpose:
    - Accept bare row arrays or {symbol, interval, data|ohlcv|candles} objects
    - Accept positional rows [time, open, high, low, close, volume?] or
      keyed rows with flexible aliases (t, timestamp, date, o, h, l, c, v, ...)
    - Normalize time to unix seconds (milliseconds and ISO-8601 accepted)
    - Drop malformed rows, sort by time, keep the later row on duplicates
    - Trim a still-forming final candle

Usage:
    from robust_validation.data_loader import load_dataset, trim_to_closed_candles

    dataset = load_dataset("price-data/SOLUSDT-1h.json")
    bars = trim_to_closed_candles(dataset.bars, dataset.interval or "1h")
"""

import json
import math
import re
import time as time_module
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

import pandas as pd
from loguru import logger

from robust_validation.backtest_config import Bar
from robust_validation.exceptions import DatasetError

MILLISECONDS_THRESHOLD = 1e12
MAX_SECONDS_TIMESTAMP = 9_999_999_999
ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
MIN_STRESS_BARS = 1000

TIME_KEYS = ("time", "t", "timestamp", "date", "datetime", "start", "openTime")
ROW_CONTAINER_KEYS = ("data", "ohlcv", "candles")

INTERVAL_UNIT_SECONDS = {
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
    "M": 2592000,
}


@dataclass
class ParsedDataset:
    """Bars plus the optional symbol/interval metadata of a dataset file."""

    bars: List[Bar]
    symbol: Optional[str] = None
    interval: Optional[str] = None
    dropped_rows: int = 0


def _normalize_number(value: float) -> Optional[int]:
    if not math.isfinite(value) or value < 0:
        return None
    if value > MILLISECONDS_THRESHOLD:
        value = value / 1000
    if value > MAX_SECONDS_TIMESTAMP:
        return None
    return int(math.floor(value))


def parse_time_to_unix_seconds(value: Any) -> Optional[int]:
    """
    Convert a time value to unix seconds.

    Args:
        value: Unix seconds, unix milliseconds (> 1e12), numeric string or
            ISO-8601 string. Naive ISO strings are read as UTC; any other
            text (including "now" or "today") is rejected.

    Returns:
        Unix seconds, or None when the value cannot be interpreted
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _normalize_number(float(value))

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _normalize_number(float(text))
        except ValueError:
            pass
        if not ISO_DATE_PREFIX.match(text):
            return None
        try:
            stamp = pd.to_datetime(text, format="ISO8601", utc=True)
        except (ValueError, TypeError):
            return None
        if pd.isna(stamp):
            return None
        return int(math.floor(stamp.timestamp()))

    return None


def _to_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _first_present(row: dict, keys: Sequence[str]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def parse_bar(row: Any) -> Optional[Bar]:
    """
    Parse one dataset row into a Bar.

    Returns None for rows that are too short, not a list/dict, or have a
    missing time or non-finite OHLC value. A non-finite volume becomes 0.
    """
    if isinstance(row, (list, tuple)):
        if len(row) < 5:
            return None
        bar_time = parse_time_to_unix_seconds(row[0])
        prices = [_to_float(v) for v in row[1:5]]
        volume = _to_float(row[5]) if len(row) > 5 else 0.0
    elif isinstance(row, dict):
        bar_time = parse_time_to_unix_seconds(_first_present(row, TIME_KEYS))
        prices = [
            _to_float(_first_present(row, ("open", "o"))),
            _to_float(_first_present(row, ("high", "h"))),
            _to_float(_first_present(row, ("low", "l"))),
            _to_float(_first_present(row, ("close", "c"))),
        ]
        volume = _to_float(_first_present(row, ("volume", "v")) or 0)
    else:
        return None

    if bar_time is None:
        return None
    if not all(math.isfinite(p) for p in prices):
        return None

    open_, high, low, close = prices
    return Bar(
        time=bar_time,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume if math.isfinite(volume) else 0.0,
    )


def _clean_label(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_dataset(raw: Any) -> ParsedDataset:
    """
    Normalize a decoded dataset document.

    Args:
        raw: A bare list of rows, or a dict with optional symbol/interval and
            a data, ohlcv or candles list

    Returns:
        ParsedDataset with bars strictly increasing in time
    """
    symbol = None
    interval = None
    rows: List[Any] = []

    if isinstance(raw, list):
        rows = raw
    elif isinstance(raw, dict):
        symbol = _clean_label(raw.get("symbol"))
        interval = _clean_label(raw.get("interval"))
        for key in ROW_CONTAINER_KEYS:
            if isinstance(raw.get(key), list):
                rows = raw[key]
                break

    parsed = [bar for bar in (parse_bar(row) for row in rows) if bar is not None]
    # Stable sort keeps source order among equal timestamps, so the later row wins below.
    parsed.sort(key=lambda bar: bar.time)

    deduped: List[Bar] = []
    for bar in parsed:
        if deduped and deduped[-1].time == bar.time:
            deduped[-1] = bar
        else:
            deduped.append(bar)

    dropped = len(rows) - len(parsed)
    if dropped:
        logger.debug(f"Dropped {dropped} malformed row(s)")

    return ParsedDataset(bars=deduped, symbol=symbol, interval=interval, dropped_rows=dropped)


def load_dataset(path) -> ParsedDataset:
    """
    Read and normalize a dataset JSON file.

    Raises:
        DatasetError: File is unreadable, not JSON, or yields zero bars
    """
    data_path = Path(path)
    try:
        with open(data_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except OSError as e:
        raise DatasetError(f"Cannot read dataset {data_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise DatasetError(f"Dataset {data_path} is not valid JSON: {e}") from e

    dataset = parse_dataset(raw)
    if not dataset.bars:
        raise DatasetError(f"No OHLCV bars parsed from {data_path}")

    logger.info(
        f"Loaded {len(dataset.bars)} bars from {data_path.name} "
        f"(symbol={dataset.symbol or '-'}, interval={dataset.interval or '-'})"
    )
    return dataset


def interval_to_seconds(interval: str) -> int:
    """
    Length of an interval string such as '15m', '1h', '4h', '1d', '1w', '1M'.

    Unknown units fall back to one day.
    """
    text = (interval or "").strip()
    if not text:
        return INTERVAL_UNIT_SECONDS["d"]
    unit = text[-1]
    try:
        count = int(text[:-1]) if text[:-1] else 1
    except ValueError:
        count = 1
    return max(1, count) * INTERVAL_UNIT_SECONDS.get(unit, INTERVAL_UNIT_SECONDS["d"])


def trim_to_closed_candles(
    bars: List[Bar],
    interval: str,
    now: Optional[float] = None,
) -> List[Bar]:
    """
    Drop the final bar while its candle is still forming.

    Args:
        bars: Ordered bars
        interval: Bar interval string
        now: Current unix time in seconds (defaults to the wall clock)

    Returns:
        Bars whose candles have closed
    """
    if len(bars) < 2:
        return list(bars)

    now_sec = time_module.time() if now is None else now
    last_open = bars[-1].time
    if now_sec < last_open + interval_to_seconds(interval):
        logger.debug(f"Trimmed forming candle at {last_open}")
        return list(bars[:-1])
    return list(bars)


def require_min_bars(bars: Sequence[Bar], minimum: int = MIN_STRESS_BARS) -> None:
    """Raise DatasetError unless at least `minimum` bars are available."""
    if len(bars) < minimum:
        raise DatasetError(f"Not enough bars for stress tests: {len(bars)} (need {minimum})")


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """
    Convert bars to an OHLCV DataFrame indexed by position.

    Columns: time, open, high, low, close, volume
    """
    return pd.DataFrame(
        {
            "time": [b.time for b in bars],
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [b.volume for b in bars],
        }
    )
