"""
Reference Strategies and Registry

Signal generators used by the CLI and batch runner. Each strategy turns an
OHLCV DataFrame into (entries, exits) boolean Series.

Strategies:
    - sma_crossover: fast/slow moving-average crossover with optional trend filter
    - rsi_reversion: RSI crosses back above oversold, exits on overbought
    - bollinger_reversion: close below the lower band, exit at a band fraction

Usage:
    from robust_validation.engines.strategies import resolve_strategies

    [strategy] = resolve_strategies(["rsi_reversion"])
    entries, exits = strategy.generate_signals(frame, strategy.default_params)
"""

from typing import Dict, List, Optional, Tuple, Type

import numpy as np
import pandas as pd

from robust_validation.backtest_config import StrategyParams
from robust_validation.exceptions import UnknownStrategyError
from robust_validation.interfaces import Strategy


def _period(value: float, minimum: int = 2) -> int:
    return max(minimum, int(round(value)))


def calculate_rsi(close: pd.Series, period: int = 14) -> pd.Series:
    """
    Calculate Relative Strength Index (RSI).

    Args:
        close: Close price series
        period: RSI calculation period (default: 14)

    Returns:
        RSI series (0-100 scale)

    Formula:
        RSI = 100 - (100 / (1 + RS))
        RS = Average Gain / Average Loss
    """
    delta = close.diff()
    gains = delta.where(delta > 0, 0.0)
    losses = -delta.where(delta < 0, 0.0)

    avg_gains = gains.ewm(span=period, adjust=False).mean()
    avg_losses = losses.ewm(span=period, adjust=False).mean()

    rs = avg_gains / avg_losses.replace(0, np.nan)
    rsi = 100 - (100 / (1 + rs))
    # No losses in the window means maximum strength
    return rsi.fillna(100.0).where(avg_gains > 0, rsi.fillna(50.0))


def calculate_adx(frame: pd.DataFrame, period: int = 14) -> pd.Series:
    """
    Average Directional Index (Wilder smoothing via EWM, alpha = 1/period).

    Args:
        frame: DataFrame with high, low, close columns
        period: Smoothing period

    Returns:
        ADX series (0-100 scale, NaN during warm-up)
    """
    high, low, close = frame["high"], frame["low"], frame["close"]
    up_move = high.diff()
    down_move = -low.diff()

    plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
    minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0)

    true_range = pd.concat(
        [high - low, (high - close.shift(1)).abs(), (low - close.shift(1)).abs()],
        axis=1,
    ).max(axis=1)

    alpha = 1.0 / period
    atr = true_range.ewm(alpha=alpha, adjust=False).mean().replace(0, np.nan)
    plus_di = 100 * plus_dm.ewm(alpha=alpha, adjust=False).mean() / atr
    minus_di = 100 * minus_dm.ewm(alpha=alpha, adjust=False).mean() / atr

    di_sum = (plus_di + minus_di).replace(0, np.nan)
    dx = 100 * (plus_di - minus_di).abs() / di_sum
    return dx.ewm(alpha=alpha, adjust=False).mean()


class ParamStrategy(Strategy):
    """Strategy whose defaults are a class-level table with optional per-instance overrides."""

    DEFAULTS: Dict[str, float] = {}
    WALK_FORWARD_PARAMS: Optional[List[str]] = None

    def __init__(self, param_overrides: Optional[StrategyParams] = None):
        self._overrides = dict(param_overrides or {})

    @property
    def default_params(self) -> StrategyParams:
        params = dict(self.DEFAULTS)
        params.update(self._overrides)
        return params

    @property
    def walk_forward_params(self) -> Optional[List[str]]:
        return list(self.WALK_FORWARD_PARAMS) if self.WALK_FORWARD_PARAMS is not None else None


class SmaCrossoverStrategy(ParamStrategy):
    """
    Moving-average crossover.

    Entry when the fast SMA crosses above the slow SMA (optionally only above
    the trend SMA); exit on the opposite cross.
    """

    key = "sma_crossover"
    name = "SMA Crossover"
    DEFAULTS = {"fastPeriod": 10, "slowPeriod": 30, "useTrendFilter": 0, "trendPeriod": 100}
    WALK_FORWARD_PARAMS = ["fastPeriod", "slowPeriod", "useTrendFilter"]

    def generate_signals(self, frame: pd.DataFrame, params: StrategyParams) -> Tuple[pd.Series, pd.Series]:
        close = frame["close"]
        fast = close.rolling(_period(params["fastPeriod"])).mean()
        slow = close.rolling(_period(params["slowPeriod"])).mean()

        above = fast > slow
        entries = above & ~above.shift(1, fill_value=False)
        exits = ~above & above.shift(1, fill_value=False)

        if params.get("useTrendFilter", 0) >= 0.5:
            trend = close.rolling(_period(params["trendPeriod"])).mean()
            entries = entries & (close > trend)

        return entries.fillna(False), exits.fillna(False)


class RsiReversionStrategy(ParamStrategy):
    """
    RSI mean reversion.

    Entry when RSI crosses back above the oversold threshold; exit when RSI
    crosses below the overbought threshold after exceeding it.
    """

    key = "rsi_reversion"
    name = "RSI Reversion"
    DEFAULTS = {"rsiPeriod": 14, "oversold": 30, "overbought": 70}

    def generate_signals(self, frame: pd.DataFrame, params: StrategyParams) -> Tuple[pd.Series, pd.Series]:
        rsi = calculate_rsi(frame["close"], period=_period(params["rsiPeriod"]))
        oversold = params["oversold"]
        overbought = params["overbought"]

        entries = (rsi > oversold) & (rsi.shift(1) <= oversold)
        exits = (rsi < overbought) & (rsi.shift(1) >= overbought)
        return entries.fillna(False), exits.fillna(False)


class BollingerReversionStrategy(ParamStrategy):
    """
    Bollinger band reversion.

    Entry when close crosses below the lower band; exit once %B rises above
    exitFraction (0.5 = middle band).
    """

    key = "bollinger_reversion"
    name = "Bollinger Reversion"
    DEFAULTS = {"bbPeriod": 20, "bbStdDev": 2, "exitFraction": 0.5}

    def generate_signals(self, frame: pd.DataFrame, params: StrategyParams) -> Tuple[pd.Series, pd.Series]:
        close = frame["close"]
        period = _period(params["bbPeriod"])
        middle = close.rolling(period).mean()
        std = close.rolling(period).std(ddof=0)
        upper = middle + params["bbStdDev"] * std
        lower = middle - params["bbStdDev"] * std

        band_width = (upper - lower).replace(0, np.nan)
        percent_b = (close - lower) / band_width

        below = close < lower
        entries = below & ~below.shift(1, fill_value=False)
        exit_level = params["exitFraction"]
        exits = (percent_b > exit_level) & (percent_b.shift(1) <= exit_level)
        return entries.fillna(False), exits.fillna(False)


STRATEGY_CLASSES: Dict[str, Type[ParamStrategy]] = {
    cls.key: cls
    for cls in (SmaCrossoverStrategy, RsiReversionStrategy, BollingerReversionStrategy)
}


def available_strategy_keys() -> List[str]:
    return list(STRATEGY_CLASSES.keys())


def resolve_strategies(
    keys: List[str],
    param_overrides: Optional[Dict[str, StrategyParams]] = None,
) -> List[Strategy]:
    """
    Instantiate strategies by registry key.

    Args:
        keys: Registry keys
        param_overrides: Optional {key: {param: value}} default overrides

    Returns:
        Strategy instances in key order

    Raises:
        UnknownStrategyError: Listing every unknown key at once
    """
    missing = [key for key in keys if key not in STRATEGY_CLASSES]
    if missing:
        raise UnknownStrategyError(missing)

    overrides = param_overrides or {}
    return [STRATEGY_CLASSES[key](overrides.get(key)) for key in keys]
