"""
Walk-Forward Optimizer - Time-Series Cross-Validation

Walk-forward optimization over bar indices: re-optimize on each in-sample
window, evaluate the chosen parameters unmodified on the following
out-of-sample window, and stitch the out-of-sample segments together.

Purpose:
    - Rolling window validation (optimize/test splits by bar count)
    - Bounded parameter grids derived from strategy defaults
    - Out-of-sample testing with running capital across windows
    - Walk-forward efficiency, parameter stability and robustness scoring

Key Features:
    - Test segments tile the dataset front to back (step = test window)
    - Grid size bounded by a combination budget regardless of parameter count
    - Score-weighted averaging of the top in-sample results
    - Warm-up lookback so indicators are primed at each segment start

Usage:
    from robust_validation.optimization import WalkForwardOptimizer, build_walk_forward_ranges

    optimizer = WalkForwardOptimizer(engine, WalkForwardSettings())
    ranges = build_walk_forward_ranges(strategy, max_combinations=180)
    result = await optimizer.run(bars, strategy, backtest_settings, ranges)
"""

import asyncio
import itertools
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from robust_validation.backtest_config import (
    BacktestResult,
    BacktestSettings,
    Bar,
    StrategyParams,
    WalkForwardSettings,
)
from robust_validation.exceptions import WalkForwardError
from robust_validation.interfaces import BacktestEngine, Strategy, is_toggle_param
from robust_validation.statistics import clamp, population_std

MAX_GRID_SIZE = 200_000
MIN_COMBINATION_BUDGET = 80
MIN_TARGET_ITERATIONS = 60
OPTIMIZATION_BATCH_SIZE = 200


@dataclass(frozen=True)
class ParameterRange:
    """Inclusive search range for one tunable parameter."""

    name: str
    min: float
    max: float
    step: float

    def values(self) -> List[float]:
        """Grid values from min to max by step, rounded to 3 decimals."""
        count = int(math.floor((self.max - self.min) / self.step + 1e-9)) + 1
        return [round(self.min + i * self.step, 3) for i in range(count)]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "min": self.min, "max": self.max, "step": self.step}


@dataclass(frozen=True)
class WindowSpec:
    """Bar-index bounds of one walk-forward window (end indices exclusive)."""

    window_index: int
    optimization_start: int
    optimization_end: int
    test_start: int
    test_end: int


@dataclass
class WalkForwardWindow:
    """One optimize-then-test cycle."""

    window_index: int
    optimization_start: int
    optimization_end: int
    test_start: int
    test_end: int
    optimized_params: StrategyParams
    in_sample_result: BacktestResult
    out_of_sample_result: BacktestResult
    sharpe_degradation: float
    performance_degradation_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "windowIndex": self.window_index,
            "optimizationStart": self.optimization_start,
            "optimizationEnd": self.optimization_end,
            "testStart": self.test_start,
            "testEnd": self.test_end,
            "optimizedParams": dict(self.optimized_params),
            "inSampleNetProfitPercent": self.in_sample_result.net_profit_percent,
            "inSampleSharpe": self.in_sample_result.sharpe_ratio,
            "outOfSampleNetProfitPercent": self.out_of_sample_result.net_profit_percent,
            "outOfSampleSharpe": self.out_of_sample_result.sharpe_ratio,
            "outOfSampleTrades": self.out_of_sample_result.total_trades,
            "sharpeDegradation": self.sharpe_degradation,
            "performanceDegradationPercent": self.performance_degradation_percent,
        }


@dataclass
class WalkForwardResult:
    """Walk-forward optimization result."""

    windows: List[WalkForwardWindow]
    combined_oos: BacktestResult
    parameter_ranges: List[ParameterRange]
    avg_in_sample_sharpe: float
    avg_out_of_sample_sharpe: float
    walk_forward_efficiency: float
    parameter_stability: float
    robustness_score: float
    warnings: List[str] = field(default_factory=list)

    @property
    def total_windows(self) -> int:
        return len(self.windows)


# ============================================================================
# Parameter ranges and grid
# ============================================================================

def build_walk_forward_ranges(strategy: Strategy, max_combinations: int = 180) -> List[ParameterRange]:
    """
    Derive search ranges from a strategy's default parameters.

    Only the strategy's declared walk-forward parameters are tuned when it
    declares any. The number of points per parameter shrinks as the tunable
    count grows so the full grid stays near the combination budget.

    Args:
        strategy: Strategy whose defaults seed the ranges
        max_combinations: Grid budget (floored at 80)

    Returns:
        List of ParameterRange; parameters with an empty range are skipped
    """
    defaults = strategy.default_params
    allowed = strategy.walk_forward_params
    names = [name for name in defaults if allowed is None or name in allowed]

    tunable_count = max(1, len(names))
    safe_max = max(MIN_COMBINATION_BUDGET, int(math.floor(max_combinations)))
    target_iterations = max(MIN_TARGET_ITERATIONS, int(math.floor(safe_max * 0.7)))
    steps_per_param = max(2, int(math.floor(target_iterations ** (1.0 / tunable_count))))

    ranges: List[ParameterRange] = []
    for name in names:
        default = float(defaults[name])
        if is_toggle_param(name, default):
            ranges.append(ParameterRange(name, 0.0, 1.0, 1.0))
            continue

        if not default.is_integer() and default < 1:
            low = max(0.1, default * 0.5)
            high = min(1.0, default * 1.5)
            step = max(0.05, (high - low) / steps_per_param)
        else:
            low = float(max(1, math.floor(default * 0.5)))
            high = float(math.ceil(default * 2))
            step = max(1.0, (high - low) / steps_per_param)

        if low >= high:
            logger.debug(f"Skipping {name}: empty range [{low}, {high}]")
            continue
        ranges.append(ParameterRange(name, low, high, step))

    return ranges


def generate_parameter_grid(ranges: Sequence[ParameterRange]) -> List[StrategyParams]:
    """Cartesian product of every range's values ([{}] when there are no ranges)."""
    if not ranges:
        return [{}]
    names = [r.name for r in ranges]
    return [dict(zip(names, combo)) for combo in itertools.product(*(r.values() for r in ranges))]


def calculate_optimization_score(result: BacktestResult, min_trades: int) -> float:
    """
    In-sample ranking score.

    Returns -inf below the trade floor, otherwise
    0.40·Sharpe + 0.25·min(PF, 5) + 0.20·winRate + 0.15·max(0, 1 - DD/50).
    """
    if result.total_trades < min_trades:
        return -math.inf

    sharpe = result.sharpe_ratio if math.isfinite(result.sharpe_ratio) else 0.0
    pf = min(result.profit_factor, 5.0) if math.isfinite(result.profit_factor) else 0.0
    win_rate = result.win_rate / 100
    drawdown_penalty = max(0.0, 1 - result.max_drawdown_percent / 50)

    return sharpe * 0.40 + pf * 0.25 + win_rate * 0.20 + drawdown_penalty * 0.15


def average_parameters(
    top_results: List[Tuple[StrategyParams, float]],
    ranges: Sequence[ParameterRange],
) -> StrategyParams:
    """
    Score-weighted average of the top results, snapped to each range's step.

    With no results the range midpoints are used; a single result (or no
    positive score) returns the best result's values.
    """
    if not top_results:
        return {r.name: (r.min + r.max) / 2 for r in ranges}
    if len(top_results) == 1:
        return dict(top_results[0][0])

    total_score = sum(max(0.0, score) for _, score in top_results)
    if total_score <= 0:
        return dict(top_results[0][0])

    averaged: StrategyParams = {}
    for r in ranges:
        weighted = sum(params.get(r.name, 0.0) * max(0.0, score) / total_score for params, score in top_results)
        averaged[r.name] = round(round(weighted / r.step) * r.step, 6)
    return averaged


# ============================================================================
# Aggregate diagnostics
# ============================================================================

def combine_oos_results(windows: Sequence[WalkForwardWindow], initial_capital: float) -> BacktestResult:
    """Concatenate out-of-sample trades and equity into one result."""
    trades = [t for w in windows for t in w.out_of_sample_result.trades]
    equity = [v for w in windows for v in w.out_of_sample_result.equity_curve]
    return BacktestResult.from_trades(trades, equity, initial_capital)


def calculate_parameter_stability(windows: Sequence[WalkForwardWindow], ranges: Sequence[ParameterRange]) -> float:
    """
    Stability of optimized parameters across windows (0-100).

    100 means identical parameters every window; each parameter's standard
    deviation is normalized by its range span.
    """
    if len(windows) < 2 or not ranges:
        return 100.0

    total = 0.0
    for r in ranges:
        values = [w.optimized_params.get(r.name, 0.0) for w in windows]
        span = r.max - r.min
        total += population_std(values) / span if span > 0 else 0.0

    avg_normalized_std = total / len(ranges)
    return clamp((1 - avg_normalized_std * 2) * 100, 0.0, 100.0)


def calculate_robustness_score(
    avg_in_sample_sharpe: float,
    avg_out_of_sample_sharpe: float,
    parameter_stability: float,
    windows: Sequence[WalkForwardWindow],
) -> float:
    """
    Composite robustness score (0-100).

    Components: efficiency (40), parameter stability (25), share of
    profitable OOS windows (20), consistency of degradation (15).
    """
    wfe = 0.0
    if avg_in_sample_sharpe > 0 and math.isfinite(avg_out_of_sample_sharpe):
        wfe = clamp(avg_out_of_sample_sharpe / avg_in_sample_sharpe, 0.0, 1.0)
    elif avg_in_sample_sharpe <= 0 and avg_out_of_sample_sharpe > 0:
        wfe = 0.5

    stability_score = (parameter_stability / 100) * 25
    positive = sum(1 for w in windows if w.out_of_sample_result.net_profit > 0)
    oos_win_score = (positive / len(windows)) * 20 if windows else 0.0

    degradations = [w.performance_degradation_percent for w in windows if math.isfinite(w.performance_degradation_percent)]
    consistency_score = max(0.0, 15 - population_std(degradations) / 10) if degradations else 0.0

    total = wfe * 40 + stability_score + oos_win_score + consistency_score
    return float(round(clamp(total, 0.0, 100.0)))


# ============================================================================
# Optimizer
# ============================================================================

class WalkForwardOptimizer:
    """
    Walk-forward optimization framework.

    Example:
        >>> optimizer = WalkForwardOptimizer(engine, WalkForwardSettings(
        ...     optimization_window_bars=2160, test_window_bars=720))
        >>> ranges = build_walk_forward_ranges(strategy, max_combinations=180)
        >>> result = await optimizer.run(bars, strategy, settings, ranges)
        >>> print(f"WFE: {result.walk_forward_efficiency:.2f}")
    """

    def __init__(self, engine: BacktestEngine, settings: Optional[WalkForwardSettings] = None):
        self.engine = engine
        self.settings = settings or WalkForwardSettings()

        logger.info(
            f"WalkForwardOptimizer initialized: opt={self.settings.optimization_window_bars} bars, "
            f"test={self.settings.test_window_bars} bars, step={self.settings.step_bars} bars"
        )

    def create_windows(self, total_bars: int) -> List[WindowSpec]:
        """
        Create walk-forward windows over bar indices.

        A trailing window whose test segment would run past the data is
        dropped.

        Raises:
            WalkForwardError: Data shorter than one window, or no window fits
        """
        opt = self.settings.optimization_window_bars
        test = self.settings.test_window_bars
        window_size = opt + test
        if total_bars < window_size:
            raise WalkForwardError(f"Insufficient data: need {window_size} bars minimum, have {total_bars}")

        windows = []
        start = 0
        while start + window_size <= total_bars:
            windows.append(
                WindowSpec(
                    window_index=len(windows),
                    optimization_start=start,
                    optimization_end=start + opt,
                    test_start=start + opt,
                    test_end=start + window_size,
                )
            )
            start += self.settings.step_bars

        if not windows:
            raise WalkForwardError("No walk-forward windows could be created.")

        logger.info(f"Created {len(windows)} walk-forward windows: opt={opt}, test={test}")
        return windows

    def run_segment(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        params: StrategyParams,
        settings: BacktestSettings,
        start: int,
        end: int,
    ) -> BacktestResult:
        """Backtest bars[start:end] with lookback warm-up history."""
        buffered_start = max(0, start - self.settings.lookback_bars)
        return self.engine.run(bars[buffered_start:end], strategy, params, settings, start_index=start - buffered_start)

    async def optimize_window(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        grid: List[StrategyParams],
        settings: BacktestSettings,
        start: int,
        end: int,
    ) -> List[Tuple[StrategyParams, float]]:
        """
        Score every grid point on one in-sample window.

        Returns:
            Up to top_n (params, score) pairs, best first
        """
        defaults = strategy.default_params
        scored: List[Tuple[int, StrategyParams, float]] = []
        for index, overrides in enumerate(grid):
            if index and index % OPTIMIZATION_BATCH_SIZE == 0:
                await asyncio.sleep(0)
            params = {**defaults, **overrides}
            result = self.run_segment(bars, strategy, params, settings, start, end)
            score = calculate_optimization_score(result, self.settings.min_trades)
            if math.isfinite(score):
                scored.append((index, params, score))

        scored.sort(key=lambda item: (-item[2], item[0]))
        return [(params, score) for _, params, score in scored[: self.settings.top_n]]

    async def run(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        settings: BacktestSettings,
        ranges: Sequence[ParameterRange],
    ) -> WalkForwardResult:
        """
        Run walk-forward optimization.

        Args:
            bars: Full ordered bar series
            strategy: Strategy to optimize
            settings: Capital and cost assumptions (initial capital seeds the OOS chain)
            ranges: Parameter ranges to search

        Returns:
            WalkForwardResult with per-window and combined diagnostics

        Raises:
            WalkForwardError: Grid too large or unusable window sizing
        """
        grid = generate_parameter_grid(ranges)
        if len(grid) > MAX_GRID_SIZE:
            raise WalkForwardError(
                f"Optimization grid too large: {len(grid)} combinations. Please reduce parameter ranges."
            )

        specs = self.create_windows(len(bars))
        logger.info(f"Starting walk-forward optimization: {len(specs)} windows x {len(grid)} combinations")

        windows: List[WalkForwardWindow] = []
        running_capital = settings.initial_capital
        for spec in specs:
            top_results = await self.optimize_window(
                bars, strategy, grid, settings, spec.optimization_start, spec.optimization_end
            )
            optimized = average_parameters(top_results, ranges)
            final_params = strategy.resolve_params(optimized)

            in_sample = self.run_segment(
                bars, strategy, final_params, settings, spec.optimization_start, spec.optimization_end
            )
            out_of_sample = self.run_segment(
                bars,
                strategy,
                final_params,
                settings.with_overrides(initial_capital=max(running_capital, 1e-9)),
                spec.test_start,
                spec.test_end,
            )
            if out_of_sample.equity_curve:
                running_capital = out_of_sample.equity_curve[-1]

            degradation = 0.0
            if in_sample.net_profit_percent != 0:
                degradation = (
                    (in_sample.net_profit_percent - out_of_sample.net_profit_percent)
                    / abs(in_sample.net_profit_percent)
                ) * 100

            windows.append(
                WalkForwardWindow(
                    window_index=spec.window_index,
                    optimization_start=spec.optimization_start,
                    optimization_end=spec.optimization_end,
                    test_start=spec.test_start,
                    test_end=spec.test_end,
                    optimized_params=final_params,
                    in_sample_result=in_sample,
                    out_of_sample_result=out_of_sample,
                    sharpe_degradation=in_sample.sharpe_ratio - out_of_sample.sharpe_ratio,
                    performance_degradation_percent=degradation,
                )
            )
            logger.info(
                f"Window {spec.window_index + 1}/{len(specs)}: "
                f"IS={in_sample.net_profit_percent:.2f}% OOS={out_of_sample.net_profit_percent:.2f}% "
                f"trades={out_of_sample.total_trades}"
            )

        combined = combine_oos_results(windows, settings.initial_capital)
        avg_is = sum(w.in_sample_result.sharpe_ratio for w in windows) / len(windows)
        avg_oos = sum(w.out_of_sample_result.sharpe_ratio for w in windows) / len(windows)
        wfe = avg_oos / avg_is if avg_is > 0 else 0.0
        stability = calculate_parameter_stability(windows, ranges)

        warnings = []
        thin = [w.window_index for w in windows if w.out_of_sample_result.total_trades < self.settings.min_oos_trades_per_window]
        if thin:
            warnings.append(f"windows_below_min_oos_trades:{','.join(str(i) for i in thin)}")
        if combined.total_trades < self.settings.min_total_oos_trades:
            warnings.append(f"combined_oos_trades_below_min:{combined.total_trades}")
        for warning in warnings:
            logger.warning(f"Walk-forward: {warning}")

        result = WalkForwardResult(
            windows=windows,
            combined_oos=combined,
            parameter_ranges=list(ranges),
            avg_in_sample_sharpe=avg_is,
            avg_out_of_sample_sharpe=avg_oos,
            walk_forward_efficiency=wfe,
            parameter_stability=stability,
            robustness_score=calculate_robustness_score(avg_is, avg_oos, stability, windows),
            warnings=warnings,
        )

        logger.info(
            f"Walk-forward complete: windows={result.total_windows}, "
            f"oosNet={combined.net_profit_percent:.2f}%, wfe={wfe:.3f}, stability={stability:.1f}"
        )
        return result
