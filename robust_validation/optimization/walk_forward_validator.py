"""
Walk-Forward Validator - Verdict over a walk-forward run

Runs the walk-forward optimizer, measures how much the optimized parameters
drift between consecutive windows, and applies the pass/fail criteria.

Purpose:
    - Parameter drift: changed parameters per window transition and
      distinct values per parameter (high counts suggest overfitting)
    - Verdict: combined OOS profit, walk-forward efficiency, parameter
      stability and combined OOS drawdown, each with its own fail reason

Usage:
    from robust_validation.optimization import WalkForwardValidator

    validator = WalkForwardValidator(optimizer, WalkForwardCriteria())
    report = await validator.validate(bars, strategy, settings, max_combinations=180)
    print(report.verdict, report.fail_reasons)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from robust_validation.backtest_config import BacktestSettings, Bar, StrategyParams
from robust_validation.interfaces import Strategy
from robust_validation.optimization.walk_forward_optimizer import (
    WalkForwardOptimizer,
    WalkForwardResult,
    build_walk_forward_ranges,
)
from robust_validation.statistics import is_finite, json_number

PARAM_CHANGE_EPSILON = 1e-9


@dataclass
class ParameterDrift:
    """How optimized parameters move between consecutive windows."""

    average_changed_params_per_window: float = 0.0
    changed_param_rate_per_window: float = 0.0
    per_param_distinct_values: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "averageChangedParamsPerWindow": self.average_changed_params_per_window,
            "changedParamRatePerWindow": self.changed_param_rate_per_window,
            "perParamDistinctValues": dict(self.per_param_distinct_values),
        }


def compute_parameter_drift(
    optimized_params: Sequence[StrategyParams],
    tunable_keys: Optional[Sequence[str]] = None,
) -> ParameterDrift:
    """
    Measure parameter drift across an ordered list of per-window parameters.

    Args:
        optimized_params: Optimized parameters of each window, in window order
        tunable_keys: Parameters the windows were optimized over; untuned
            defaults merged into each window are ignored. When omitted, the
            union of all window keys is used.

    Returns:
        ParameterDrift; all zeros for fewer than two windows (distinct value
        counts are still reported for a single window)
    """
    if not optimized_params:
        return ParameterDrift()

    keys: List[str] = list(tunable_keys or [])
    if not keys:
        for params in optimized_params:
            for key in params:
                if key not in keys:
                    keys.append(key)

    distinct = {
        key: len({float(p[key]) for p in optimized_params if is_finite(p.get(key))})
        for key in keys
    }
    if len(optimized_params) < 2 or not keys:
        return ParameterDrift(per_param_distinct_values=distinct)

    changed = 0
    for prev, curr in zip(optimized_params, optimized_params[1:]):
        for key in keys:
            a, b = prev.get(key), curr.get(key)
            if not is_finite(a) or not is_finite(b):
                continue
            if abs(float(a) - float(b)) > PARAM_CHANGE_EPSILON:
                changed += 1

    average = changed / (len(optimized_params) - 1)
    return ParameterDrift(
        average_changed_params_per_window=average,
        changed_param_rate_per_window=average / max(1, len(keys)),
        per_param_distinct_values=distinct,
    )


@dataclass(frozen=True)
class WalkForwardCriteria:
    """
    Walk-forward pass thresholds.

    Attributes:
        min_combined_oos_net_profit_percent: Combined OOS profit must exceed this
        min_walk_forward_efficiency: OOS/IS Sharpe ratio floor
        min_parameter_stability: Stability floor (0-100)
        max_combined_oos_drawdown_percent: Combined OOS drawdown ceiling
    """

    min_combined_oos_net_profit_percent: float = 0.0
    min_walk_forward_efficiency: float = 0.45
    min_parameter_stability: float = 40.0
    max_combined_oos_drawdown_percent: float = 30.0

    def __post_init__(self):
        """Validate thresholds."""
        if not 0 <= self.min_parameter_stability <= 100:
            raise ValueError("min_parameter_stability must be in [0, 100]")
        if self.max_combined_oos_drawdown_percent < 0:
            raise ValueError("max_combined_oos_drawdown_percent must be non-negative")

    def to_dict(self) -> Dict[str, float]:
        return {
            "minCombinedOOSNetProfitPercent": self.min_combined_oos_net_profit_percent,
            "minWalkForwardEfficiency": self.min_walk_forward_efficiency,
            "minParameterStability": self.min_parameter_stability,
            "maxCombinedOOSDrawdownPercent": self.max_combined_oos_drawdown_percent,
        }


def evaluate_walk_forward(
    combined_net_profit_percent: float,
    walk_forward_efficiency: float,
    parameter_stability: float,
    combined_max_drawdown_percent: float,
    criteria: WalkForwardCriteria,
) -> List[str]:
    """
    Apply walk-forward criteria.

    Returns:
        Fail reasons in criteria order (empty list = PASS)
    """
    reasons = []
    if combined_net_profit_percent <= criteria.min_combined_oos_net_profit_percent:
        reasons.append("non_positive_combined_oos_profit")
    if walk_forward_efficiency < criteria.min_walk_forward_efficiency:
        reasons.append("low_walk_forward_efficiency")
    if parameter_stability < criteria.min_parameter_stability:
        reasons.append("low_parameter_stability")
    if combined_max_drawdown_percent > criteria.max_combined_oos_drawdown_percent:
        reasons.append("high_combined_oos_drawdown")
    return reasons


@dataclass
class WalkForwardReport:
    """Walk-forward section of the stress report."""

    criteria: WalkForwardCriteria
    optimization_window_bars: int
    test_window_bars: int
    step_size_bars: int
    result: WalkForwardResult
    parameter_drift: ParameterDrift
    verdict: str
    fail_reasons: List[str]

    def to_dict(self) -> Dict[str, Any]:
        combined = self.result.combined_oos
        return {
            "criteria": self.criteria.to_dict(),
            "optimizationWindowBars": self.optimization_window_bars,
            "testWindowBars": self.test_window_bars,
            "stepSizeBars": self.step_size_bars,
            "totalWindows": self.result.total_windows,
            "parameterRanges": [r.to_dict() for r in self.result.parameter_ranges],
            "combinedOOS": {
                "netProfitPercent": combined.net_profit_percent,
                "profitFactor": json_number(combined.profit_factor),
                "maxDrawdownPercent": combined.max_drawdown_percent,
                "totalTrades": combined.total_trades,
                "winRate": combined.win_rate,
            },
            "avgInSampleSharpe": self.result.avg_in_sample_sharpe,
            "avgOutOfSampleSharpe": self.result.avg_out_of_sample_sharpe,
            "walkForwardEfficiency": self.result.walk_forward_efficiency,
            "robustnessScore": self.result.robustness_score,
            "parameterStability": self.result.parameter_stability,
            "parameterDrift": self.parameter_drift.to_dict(),
            "windows": [w.to_dict() for w in self.result.windows],
            "warnings": list(self.result.warnings),
            "verdict": self.verdict,
            "failReasons": list(self.fail_reasons),
        }


class WalkForwardValidator:
    """
    Walk-forward verdict framework.

    Example:
        >>> validator = WalkForwardValidator(optimizer)
        >>> report = await validator.validate(bars, strategy, settings)
        >>> if report.verdict == "FAIL":
        ...     print(report.fail_reasons)
    """

    def __init__(self, optimizer: WalkForwardOptimizer, criteria: Optional[WalkForwardCriteria] = None):
        self.optimizer = optimizer
        self.criteria = criteria or WalkForwardCriteria()

        logger.info(
            f"WalkForwardValidator initialized: "
            f"min_wfe={self.criteria.min_walk_forward_efficiency:.2f}, "
            f"min_stability={self.criteria.min_parameter_stability:.1f}, "
            f"max_dd={self.criteria.max_combined_oos_drawdown_percent:.1f}%"
        )

    def build_report(self, result: WalkForwardResult) -> WalkForwardReport:
        """Attach drift and verdict to a finished walk-forward run."""
        drift = compute_parameter_drift(
            [w.optimized_params for w in result.windows],
            [r.name for r in result.parameter_ranges],
        )
        reasons = evaluate_walk_forward(
            result.combined_oos.net_profit_percent,
            result.walk_forward_efficiency,
            result.parameter_stability,
            result.combined_oos.max_drawdown_percent,
            self.criteria,
        )
        settings = self.optimizer.settings
        report = WalkForwardReport(
            criteria=self.criteria,
            optimization_window_bars=settings.optimization_window_bars,
            test_window_bars=settings.test_window_bars,
            step_size_bars=settings.step_bars,
            result=result,
            parameter_drift=drift,
            verdict="PASS" if not reasons else "FAIL",
            fail_reasons=reasons,
        )

        logger.info(
            f"walkForward={report.verdict} windows={result.total_windows} "
            f"oosNet={result.combined_oos.net_profit_percent:.2f}% "
            f"wfe={result.walk_forward_efficiency:.3f} stability={result.parameter_stability:.1f}"
            + (f" reasons={','.join(reasons)}" if reasons else "")
        )
        return report

    async def validate(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        settings: BacktestSettings,
        max_combinations: int = 180,
    ) -> WalkForwardReport:
        """
        Run walk-forward optimization and judge it.

        Args:
            bars: Full ordered bar series
            strategy: Strategy under test
            settings: Capital and cost assumptions
            max_combinations: Grid budget for range derivation

        Returns:
            WalkForwardReport with verdict and fail reasons
        """
        ranges = build_walk_forward_ranges(strategy, max_combinations)
        result = await self.optimizer.run(bars, strategy, settings, ranges)
        return self.build_report(result)
