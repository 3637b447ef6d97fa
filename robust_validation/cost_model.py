"""
Transaction Cost Model

Purpose: Cost assumptions for stress testing, scaled to the instrument's
         price granularity instead of an arbitrary constant.

Key Features:
  - Tick-based slippage: one tick relative to the median close, in bps
  - Hard 1 bps floor so high-priced instruments are never modeled as free
  - Side-aware slippage and commission helpers for the backtest engine
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Sequence

from loguru import logger

from robust_validation.backtest_config import Bar
from robust_validation.statistics import median

MIN_SLIPPAGE_BPS = 1.0
DEFAULT_TICK_SIZE = 0.01


class OrderSide(Enum):
    """Order side enumeration."""
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class SlippageEstimate:
    """
    Tick-derived slippage assumption.

    Attributes:
        tick_size: Minimum price increment used for the estimate
        reference_median_price: Median of positive finite closes
        raw_tick_slippage_bps: tick_size / median price in bps (1 when no price)
        slippage_bps: raw value floored at MIN_SLIPPAGE_BPS
    """

    tick_size: float
    reference_median_price: float
    raw_tick_slippage_bps: float
    slippage_bps: float

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "tickSize": self.tick_size,
            "referenceMedianPrice": self.reference_median_price,
            "rawTickSlippageBps": self.raw_tick_slippage_bps,
            "slippageBps": self.slippage_bps,
        }


def raw_tick_slippage_bps(tick_size: float, median_price: float) -> float:
    """
    One tick expressed in basis points of the median price.

    Example:
        >>> raw_tick_slippage_bps(0.01, 50_000)
        0.002
    """
    if median_price <= 0:
        return 1.0
    return (tick_size / median_price) * 10_000


def derive_tick_slippage(bars: Sequence[Bar], tick_size: float = DEFAULT_TICK_SIZE) -> SlippageEstimate:
    """
    Derive the slippage assumption from instrument tick size.

    Args:
        bars: Bars whose closes set the reference price
        tick_size: Minimum price increment (non-positive falls back to 0.01)

    Returns:
        SlippageEstimate with the floored bps value
    """
    if not tick_size or tick_size <= 0:
        tick_size = DEFAULT_TICK_SIZE

    reference = median(b.close for b in bars if b.close > 0)
    raw = raw_tick_slippage_bps(tick_size, reference)
    estimate = SlippageEstimate(
        tick_size=tick_size,
        reference_median_price=reference,
        raw_tick_slippage_bps=raw,
        slippage_bps=max(MIN_SLIPPAGE_BPS, raw),
    )

    logger.info(
        f"Slippage {estimate.slippage_bps:.4f}bps "
        f"(rawTick={raw:.4f}bps, tick={tick_size} @ medianPrice={reference:.4f})"
    )
    return estimate


def apply_slippage(price: float, side: OrderSide, slippage_bps: float) -> float:
    """Adverse fill: buys fill higher, sells fill lower."""
    rate = slippage_bps / 10_000
    if side == OrderSide.BUY:
        return price * (1 + rate)
    return price * (1 - rate)


def commission_cost(notional: float, commission_percent: float) -> float:
    return abs(notional) * commission_percent / 100
