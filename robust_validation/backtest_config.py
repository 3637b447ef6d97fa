"""
Backtest Configuration and Data Classes

Purpose: Define configuration structures and data models shared by the
         robustness validation pipeline.

Classes:
  - Bar: One closed OHLCV candle
  - BacktestSettings: Capital, sizing and cost assumptions for a simulation
  - FinderSettings: Seeded candidate search configuration
  - WalkForwardSettings: Walk-forward window sizing and optimization limits
  - Trade: Closed trade log entry
  - BacktestResult: Immutable simulation result with derived statistics
  - SeedRun: Outcome of one seeded candidate search
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from robust_validation.statistics import (
    json_number,
    max_drawdown,
    profit_factor,
    sharpe_ratio_from_returns,
)

StrategyParams = Dict[str, float]

VALID_TRADE_DIRECTIONS = ["long", "short", "both", "combined"]
VALID_TRADE_FILTERS = ["none", "close", "volume", "rsi", "trend", "adx"]
VALID_SIZING_MODES = ["percent", "fixed"]


@dataclass(frozen=True)
class Bar:
    """
    One OHLCV candle.

    Attributes:
        time: Candle open time in unix seconds
        open: Open price
        high: High price
        low: Low price
        close: Close price
        volume: Traded volume (0 when the source omits it)
    """

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class BacktestSettings:
    """
    Capital, sizing and cost assumptions for one simulation.

    Attributes:
        initial_capital: Starting equity
        position_size_percent: Percent of equity committed per trade (percent sizing)
        commission_percent: Commission per side, in percent of notional (0.1 = 0.1%)
        slippage_bps: Adverse fill slippage per side in basis points
        sizing_mode: 'percent' or 'fixed'
        fixed_trade_amount: Notional per trade in fixed sizing mode
        trade_direction: long, short, both or combined
        trade_filter_mode: Entry filter (none, close, volume, rsi, trend, adx)
    """

    initial_capital: float = 10_000.0
    position_size_percent: float = 100.0
    commission_percent: float = 0.1
    slippage_bps: float = 0.0
    sizing_mode: str = "percent"
    fixed_trade_amount: float = 1_000.0
    trade_direction: str = "long"
    trade_filter_mode: str = "none"

    def __post_init__(self):
        """Validate settings."""
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be positive")
        if not 0 < self.position_size_percent <= 100:
            raise ValueError("position_size_percent must be in (0, 100]")
        if self.commission_percent < 0:
            raise ValueError("commission_percent must be non-negative")
        if self.slippage_bps < 0:
            raise ValueError("slippage_bps must be non-negative")
        if self.sizing_mode not in VALID_SIZING_MODES:
            raise ValueError(f"sizing_mode must be one of {VALID_SIZING_MODES}")
        if self.fixed_trade_amount <= 0:
            raise ValueError("fixed_trade_amount must be positive")
        if self.trade_direction not in VALID_TRADE_DIRECTIONS:
            raise ValueError(f"trade_direction must be one of {VALID_TRADE_DIRECTIONS}")
        if self.trade_filter_mode not in VALID_TRADE_FILTERS:
            raise ValueError(f"trade_filter_mode must be one of {VALID_TRADE_FILTERS}")

    def with_overrides(self, **overrides) -> "BacktestSettings":
        """Return a copy with the given fields replaced (validation re-runs)."""
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialCapital": self.initial_capital,
            "positionSizePercent": self.position_size_percent,
            "commissionPercent": self.commission_percent,
            "slippageBps": self.slippage_bps,
            "sizingMode": self.sizing_mode,
            "fixedTradeAmount": self.fixed_trade_amount,
            "tradeDirection": self.trade_direction,
            "tradeFilterMode": self.trade_filter_mode,
        }


@dataclass(frozen=True)
class FinderSettings:
    """
    Seeded candidate search configuration.

    Attributes:
        top_n: Cap on the "top decile" of stage C survivors used for metrics
        steps: Grid points per side when sampling around a default value
        range_percent: Sampling range around each default, in percent
        max_runs: Parameter sets sampled per seed
        min_trades: Stage A trade-count floor
        max_trades: Stage A trade-count ceiling
        folds: Contiguous time folds evaluated per candidate
        min_profitable_fold_ratio: Stage B floor on profitable folds
        fold_drawdown_limit_percent: Drawdown that counts as a fold breach
        max_dd_breach_rate: Stage C ceiling on breached folds
        max_fold_stability_penalty: Stage C ceiling on fold return dispersion
    """

    top_n: int = 12
    steps: int = 3
    range_percent: float = 35.0
    max_runs: int = 120
    min_trades: float = 40
    max_trades: float = math.inf
    folds: int = 4
    min_profitable_fold_ratio: float = 0.5
    fold_drawdown_limit_percent: float = 30.0
    max_dd_breach_rate: float = 0.25
    max_fold_stability_penalty: float = 2.0

    def __post_init__(self):
        """Validate finder settings."""
        if self.top_n < 1:
            raise ValueError("top_n must be at least 1")
        if self.steps < 1:
            raise ValueError("steps must be at least 1")
        if self.range_percent < 0:
            raise ValueError("range_percent must be non-negative")
        if self.max_runs < 1:
            raise ValueError("max_runs must be at least 1")
        if self.min_trades < 0:
            raise ValueError("min_trades must be non-negative")
        if self.max_trades < self.min_trades:
            raise ValueError("max_trades cannot be below min_trades")
        if self.folds < 2:
            raise ValueError("folds must be at least 2")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topN": self.top_n,
            "steps": self.steps,
            "rangePercent": self.range_percent,
            "maxRuns": self.max_runs,
            "minTrades": self.min_trades,
            "maxTrades": json_number(self.max_trades),
            "folds": self.folds,
        }


@dataclass(frozen=True)
class WalkForwardSettings:
    """
    Walk-forward window sizing and optimization limits.

    Defaults describe a 3 month optimize / 1 month test cycle on hourly bars.

    Attributes:
        optimization_window_bars: In-sample bars per window
        test_window_bars: Out-of-sample bars per window
        step_bars: Window advance (defaults to test_window_bars for tiling)
        max_combinations: Grid budget used to size parameter ranges
        top_n: Best in-sample results averaged into the window's parameters
        min_trades: In-sample trade floor for a scored result
        min_oos_trades_per_window: Per-window OOS trade warning threshold
        min_total_oos_trades: Combined OOS trade warning threshold
        lookback_bars: Warm-up history fed to each segment's backtest
    """

    optimization_window_bars: int = 24 * 30 * 3
    test_window_bars: int = 24 * 30
    step_bars: Optional[int] = None
    max_combinations: int = 180
    top_n: int = 2
    min_trades: int = 5
    min_oos_trades_per_window: int = 1
    min_total_oos_trades: int = 40
    lookback_bars: int = 250

    def __post_init__(self):
        """Validate window sizing."""
        if self.optimization_window_bars < 1:
            raise ValueError("optimization_window_bars must be positive")
        if self.test_window_bars < 1:
            raise ValueError("test_window_bars must be positive")
        if self.step_bars is None:
            object.__setattr__(self, "step_bars", self.test_window_bars)
        if self.step_bars < 1:
            raise ValueError("step_bars must be positive")
        if self.top_n < 1:
            raise ValueError("top_n must be at least 1")
        if self.lookback_bars < 0:
            raise ValueError("lookback_bars must be non-negative")


@dataclass(frozen=True)
class Trade:
    """
    Closed trade log entry.

    Attributes:
        direction: 'long' or 'short'
        entry_time: Entry bar time (unix seconds)
        exit_time: Exit bar time (unix seconds)
        entry_price: Fill price including slippage
        exit_price: Fill price including slippage
        size: Units held
        pnl: Realized profit/loss after commission
        pnl_percent: Return on committed notional, in percent
        exit_reason: signal, reversal or end_of_data
    """

    direction: str
    entry_time: int
    exit_time: int
    entry_price: float
    exit_price: float
    size: float
    pnl: float
    pnl_percent: float
    exit_reason: str = "signal"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction,
            "entryTime": self.entry_time,
            "exitTime": self.exit_time,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "size": self.size,
            "pnl": self.pnl,
            "pnlPercent": self.pnl_percent,
            "exitReason": self.exit_reason,
        }


@dataclass(frozen=True)
class BacktestResult:
    """
    Immutable simulation result.

    Produced once per (bars, params) evaluation; statistics are derived
    from the trade list and equity curve by from_trades().
    """

    initial_capital: float
    final_capital: float
    net_profit: float
    net_profit_percent: float
    max_drawdown: float
    max_drawdown_percent: float
    profit_factor: float
    win_rate: float
    sharpe_ratio: float
    total_trades: int
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[float] = field(default_factory=list)

    @classmethod
    def from_trades(
        cls,
        trades: List[Trade],
        equity_curve: List[float],
        initial_capital: float,
        final_capital: Optional[float] = None,
    ) -> "BacktestResult":
        """
        Build a result from trades and an equity curve.

        Args:
            trades: Closed trades in chronological order
            equity_curve: Equity value per bar
            initial_capital: Capital at the start of the curve
            final_capital: Ending capital (defaults to the last equity value)

        Returns:
            BacktestResult with drawdown, profit factor, win rate and Sharpe
        """
        if final_capital is None:
            final_capital = equity_curve[-1] if equity_curve else initial_capital

        pnls = [t.pnl for t in trades]
        winners = sum(1 for p in pnls if p > 0)
        net_profit = final_capital - initial_capital
        dd_amount, dd_percent = max_drawdown(equity_curve, initial_capital)

        return cls(
            initial_capital=initial_capital,
            final_capital=final_capital,
            net_profit=net_profit,
            net_profit_percent=(net_profit / initial_capital) * 100 if initial_capital > 0 else 0.0,
            max_drawdown=dd_amount,
            max_drawdown_percent=dd_percent,
            profit_factor=profit_factor(pnls),
            win_rate=(winners / len(trades)) * 100 if trades else 0.0,
            sharpe_ratio=sharpe_ratio_from_returns([t.pnl_percent for t in trades]),
            total_trades=len(trades),
            trades=list(trades),
            equity_curve=list(equity_curve),
        )

    @property
    def expectancy_percent(self) -> float:
        """Mean per-trade return in percent."""
        if not self.trades:
            return 0.0
        return sum(t.pnl_percent for t in self.trades) / len(self.trades)

    def to_dict(self, include_trades: bool = False) -> Dict[str, Any]:
        """
        Serialize for JSON reports.

        Infinite profit factors are written as null.
        """
        payload = {
            "initialCapital": self.initial_capital,
            "finalCapital": self.final_capital,
            "netProfit": self.net_profit,
            "netProfitPercent": self.net_profit_percent,
            "maxDrawdown": self.max_drawdown,
            "maxDrawdownPercent": self.max_drawdown_percent,
            "profitFactor": json_number(self.profit_factor),
            "winRate": self.win_rate,
            "sharpeRatio": self.sharpe_ratio,
            "totalTrades": self.total_trades,
            "expectancyPercent": self.expectancy_percent,
        }
        if include_trades:
            payload["trades"] = [t.to_dict() for t in self.trades]
            payload["equityCurve"] = list(self.equity_curve)
        return payload


@dataclass(frozen=True)
class SeedRun:
    """
    Outcome of one seeded candidate search.

    Attributes:
        seed: Search seed
        passed: True when the search produced a candidate
        robust_score: Search-internal robustness score of the candidate
        pass_rate: Fraction of sampled parameter sets surviving all stages
        stage_c_survivors: Parameter sets surviving the final stage
        params: Candidate parameters (None without a candidate)
        result: Backtest of the candidate on the searched bars
        decision_reason: Why the search passed or failed ('no_pass' when empty)
        audit_record: Structured per-cell audit payload emitted by the search
    """

    seed: int
    passed: bool
    robust_score: float = 0.0
    pass_rate: float = 0.0
    stage_c_survivors: int = 0
    params: Optional[StrategyParams] = None
    result: Optional[BacktestResult] = None
    decision_reason: str = "no_pass"
    audit_record: Optional[Dict[str, Any]] = None

    @classmethod
    def no_pass(cls, seed: int, audit_record: Optional[Dict[str, Any]] = None) -> "SeedRun":
        return cls(seed=seed, passed=False, audit_record=audit_record)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "passed": self.passed,
            "robustScore": self.robust_score,
            "passRate": self.pass_rate,
            "stageCSurvivors": self.stage_c_survivors,
            "params": dict(self.params) if self.params is not None else None,
            "result": self.result.to_dict() if self.result is not None else None,
            "decisionReason": self.decision_reason,
        }
