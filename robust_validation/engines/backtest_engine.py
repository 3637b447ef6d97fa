"""
Simple Backtest Engine - Signal-driven trade simulation

Purpose:
    - Deterministic next-open execution of strategy entry/exit signals
    - Percent-of-equity or fixed-notional position sizing
    - Commission (percent per side) and tick-derived slippage (bps per side)
    - Long, short, or always-in-market (both/combined) direction modes
    - Optional entry filters (close, volume, rsi, trend, adx)

Key Features:
    - Event-driven over signal bars only; the equity curve is assembled with
      numpy slices, so grid searches over thousands of bars stay fast
    - Warm-up support: bars before start_index feed indicators but cannot
      open trades, and equity is reported from start_index
    - Open positions are liquidated at the final close ('end_of_data')

Usage:
    from robust_validation.engines import SimpleBacktestEngine

    engine = SimpleBacktestEngine()
    result = engine.run(bars, strategy, strategy.default_params, BacktestSettings())
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from robust_validation.backtest_config import (
    BacktestResult,
    BacktestSettings,
    Bar,
    StrategyParams,
    Trade,
)
from robust_validation.cost_model import OrderSide, apply_slippage, commission_cost
from robust_validation.data_loader import bars_to_frame
from robust_validation.engines.strategies import calculate_adx, calculate_rsi
from robust_validation.interfaces import BacktestEngine, Strategy

FILTER_VOLUME_WINDOW = 20
FILTER_RSI_PERIOD = 14
FILTER_TREND_PERIOD = 50
FILTER_ADX_PERIOD = 14
FILTER_ADX_MIN = 20.0


@dataclass
class _OpenPosition:
    direction: str
    entry_index: int
    entry_price: float
    size: float
    notional: float
    entry_commission: float


def build_entry_filters(frame: pd.DataFrame, mode: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Entry permission masks for long and short entries.

    Args:
        frame: OHLCV DataFrame
        mode: none, close, volume, rsi, trend or adx

    Returns:
        (long_allowed, short_allowed) boolean arrays
    """
    n = len(frame)
    if mode == "none" or n == 0:
        allowed = np.ones(n, dtype=bool)
        return allowed, allowed

    close = frame["close"]
    if mode == "close":
        prev = close.shift(1)
        return (close > prev).to_numpy(), (close < prev).to_numpy()
    if mode == "volume":
        avg = frame["volume"].rolling(FILTER_VOLUME_WINDOW).mean()
        active = (frame["volume"] > avg).to_numpy()
        return active, active
    if mode == "rsi":
        rsi = calculate_rsi(close, FILTER_RSI_PERIOD)
        return (rsi < 70).to_numpy(), (rsi > 30).to_numpy()
    if mode == "trend":
        sma = close.rolling(FILTER_TREND_PERIOD).mean()
        return (close > sma).to_numpy(), (close < sma).to_numpy()
    if mode == "adx":
        trending = (calculate_adx(frame, FILTER_ADX_PERIOD) > FILTER_ADX_MIN).to_numpy()
        return trending, trending

    raise ValueError(f"Unknown trade filter mode: {mode}")


class SimpleBacktestEngine(BacktestEngine):
    """
    Signal-driven backtest engine.

    A signal observed on bar i fills at the open of bar i+1, so no decision
    uses prices it could not have seen.

    Example:
        >>> engine = SimpleBacktestEngine()
        >>> result = engine.run(bars, strategy, params, settings, start_index=250)
        >>> print(f"{result.net_profit_percent:.2f}% over {result.total_trades} trades")
    """

    def run(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        params: StrategyParams,
        settings: BacktestSettings,
        start_index: int = 0,
    ) -> BacktestResult:
        n = len(bars)
        start_index = max(0, min(start_index, n))
        initial_capital = settings.initial_capital
        if n - start_index < 2:
            return BacktestResult.from_trades([], [initial_capital] * (n - start_index), initial_capital)

        frame = bars_to_frame(bars)
        entries, exits = strategy.generate_signals(frame, params)
        entries = np.asarray(entries, dtype=bool)
        exits = np.asarray(exits, dtype=bool)
        long_allowed, short_allowed = build_entry_filters(frame, settings.trade_filter_mode)

        opens = frame["open"].to_numpy(dtype=float)
        closes = frame["close"].to_numpy(dtype=float)
        times = frame["time"].to_numpy()

        capital = initial_capital
        position: Optional[_OpenPosition] = None
        trades: List[Trade] = []
        spans: List[Tuple[int, int, _OpenPosition]] = []
        realized_delta = np.zeros(n, dtype=float)

        def open_position(direction: str, index: int):
            nonlocal capital, position
            if capital <= 0:
                return
            side = OrderSide.BUY if direction == "long" else OrderSide.SELL
            price = apply_slippage(opens[index], side, settings.slippage_bps)
            if settings.sizing_mode == "fixed":
                notional = min(settings.fixed_trade_amount, capital)
            else:
                notional = capital * settings.position_size_percent / 100
            if notional <= 0 or price <= 0:
                return
            fee = commission_cost(notional, settings.commission_percent)
            capital -= fee
            realized_delta[index] -= fee
            position = _OpenPosition(direction, index, price, notional / price, notional, fee)

        def close_position(index: int, raw_price: float, reason: str):
            nonlocal capital, position
            side = OrderSide.SELL if position.direction == "long" else OrderSide.BUY
            price = apply_slippage(raw_price, side, settings.slippage_bps)
            sign = 1.0 if position.direction == "long" else -1.0
            gross = (price - position.entry_price) * position.size * sign
            fee = commission_cost(price * position.size, settings.commission_percent)
            capital += gross - fee
            realized_delta[index] += gross - fee
            pnl = gross - fee - position.entry_commission
            trades.append(
                Trade(
                    direction=position.direction,
                    entry_time=int(times[position.entry_index]),
                    exit_time=int(times[index]),
                    entry_price=position.entry_price,
                    exit_price=price,
                    size=position.size,
                    pnl=pnl,
                    pnl_percent=(pnl / position.notional) * 100,
                    exit_reason=reason,
                )
            )
            spans.append((position.entry_index, index, position))
            position = None

        direction_mode = settings.trade_direction
        signal_bars = np.flatnonzero(entries | exits)
        for i in signal_bars:
            if i < start_index or i >= n - 1:
                continue
            fill = i + 1

            if direction_mode in ("long", "short"):
                if position is not None and exits[i]:
                    close_position(fill, opens[fill], "signal")
                if position is None and entries[i]:
                    allowed = long_allowed[i] if direction_mode == "long" else short_allowed[i]
                    if allowed:
                        open_position(direction_mode, fill)
                continue

            # both/combined: entries go long, exits go short, reversing any open position
            desired = None
            if entries[i] and not exits[i]:
                desired = "long"
            elif exits[i] and not entries[i]:
                desired = "short"
            if desired is None or (position is not None and position.direction == desired):
                continue
            if position is not None:
                close_position(fill, opens[fill], "reversal")
            allowed = long_allowed[i] if desired == "long" else short_allowed[i]
            if allowed:
                open_position(desired, fill)

        if position is not None:
            close_position(n - 1, closes[n - 1], "end_of_data")

        equity = initial_capital + np.cumsum(realized_delta)
        unrealized = np.zeros(n, dtype=float)
        for entry_index, exit_index, pos in spans:
            sign = 1.0 if pos.direction == "long" else -1.0
            segment = slice(entry_index, exit_index)
            unrealized[segment] += (closes[segment] - pos.entry_price) * pos.size * sign
        equity_curve = (equity + unrealized)[start_index:].tolist()

        result = BacktestResult.from_trades(trades, equity_curve, initial_capital, final_capital=capital)
        logger.debug(
            f"Backtest {strategy.key}: {result.total_trades} trades, "
            f"net={result.net_profit_percent:.2f}%, dd={result.max_drawdown_percent:.2f}%"
        )
        return result
