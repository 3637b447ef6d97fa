"""
Statistics Helpers

Purpose: Small, dependency-light numeric helpers shared by the validators,
         the walk-forward optimizer and the audit aggregator.

Functions:
  - is_finite / as_finite_number: tolerant numeric coercion
  - median: robust central tendency over finite values (0 for empty input)
  - sharpe_ratio_from_returns: normalized trade-return Sharpe
  - max_drawdown: peak-to-trough drawdown from an equity curve
  - profit_factor: gross profit / gross loss
  - json_number: finite float or None for JSON artifacts
"""

import math
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

SHARPE_MIN_TRADES = 5
SHARPE_MIN_STD_DEV = 1e-4
SHARPE_MAX_ABS = 8.0


def is_finite(value: Any) -> bool:
    """Check whether value is a real, finite number (bools excluded)."""
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float, np.integer, np.floating)):
        return False
    return math.isfinite(float(value))


def as_finite_number(value: Any, fallback: float = 0.0) -> float:
    """
    Coerce value to a finite float.

    Numeric strings are accepted; anything that does not yield a finite
    number returns fallback.
    """
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def median(values: Iterable[Any]) -> float:
    """
    Median of the finite values in an iterable.

    Non-finite and non-numeric entries are ignored. An empty input returns
    0.0; an even count averages the two middle values.

    Example:
        >>> median([2.0, -0.5, 1.0, 3.0, 0.2])
        1.0
        >>> median([])
        0.0
    """
    clean = [float(v) for v in values if is_finite(v)]
    if not clean:
        return 0.0
    return float(np.median(np.asarray(clean, dtype=float)))


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def sharpe_ratio_from_returns(returns: Sequence[float]) -> float:
    """
    Sharpe ratio of per-trade returns.

    Returns 0 for fewer than 5 finite returns or near-zero dispersion, and
    clamps the raw ratio to [-8, 8] so thin samples cannot dominate scores.
    """
    finite = np.asarray([r for r in returns if is_finite(r)], dtype=float)
    if finite.size < SHARPE_MIN_TRADES:
        return 0.0

    std = float(np.std(finite, ddof=1)) if finite.size > 1 else 0.0
    if not math.isfinite(std) or std < SHARPE_MIN_STD_DEV:
        return 0.0

    raw = float(np.mean(finite)) / std
    if not math.isfinite(raw):
        return 0.0
    return clamp(raw, -SHARPE_MAX_ABS, SHARPE_MAX_ABS)


def max_drawdown(equity_curve: Sequence[float], initial_capital: float) -> Tuple[float, float]:
    """
    Maximum drawdown of an equity curve.

    The running peak starts at initial_capital, so a curve that opens below
    its starting capital already counts as a drawdown.

    Returns:
        (max_drawdown_amount, max_drawdown_percent)
    """
    peak = initial_capital
    worst = 0.0
    worst_percent = 0.0
    for value in equity_curve:
        if value > peak:
            peak = value
        drawdown = peak - value
        if drawdown > worst:
            worst = drawdown
            worst_percent = (drawdown / peak) * 100 if peak > 0 else 0.0
    return worst, worst_percent


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit / gross loss; inf with profits and no losses, 0 with neither."""
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p <= 0))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return math.inf if gross_profit > 0 else 0.0


def population_std(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


def json_number(value: Optional[float]) -> Optional[float]:
    """Finite float for JSON output; None for missing or non-finite values."""
    if value is None or not is_finite(value):
        return None
    return float(value)


def sorted_counts(counts: dict) -> dict:
    """Order a reason -> count map by count descending, then reason name."""
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


def finite_values(values: Iterable[Any]) -> List[float]:
    return [float(v) for v in values if is_finite(v)]
