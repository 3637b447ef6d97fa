"""
Fee/Slippage Sensitivity Ensemble

Reruns the seeded candidate search on the full (unsplit) dataset under a
slippage assumption derived from the instrument's tick size, and checks that
the candidates still make money after costs.

Usage:
    from robust_validation.validation import FeeSlippageEnsemble

    ensemble = FeeSlippageEnsemble(finder)
    estimate, costed = ensemble.derive_costs(bars, settings, tick_size=0.01)
    report = await ensemble.run(bars, strategy, seeds, costed, slippage=estimate)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from robust_validation.backtest_config import BacktestSettings, Bar, SeedRun
from robust_validation.cost_model import DEFAULT_TICK_SIZE, SlippageEstimate, derive_tick_slippage
from robust_validation.interfaces import CandidateFinder, Strategy
from robust_validation.statistics import json_number, median


@dataclass(frozen=True)
class SensitivityCriteria:
    """
    Cost sensitivity pass thresholds.

    Attributes:
        min_seed_passes: Seeds that must produce a candidate
        min_median_net_profit_percent: Median net profit must exceed this
        max_median_drawdown_percent: Median max drawdown ceiling
    """

    min_seed_passes: int = 3
    min_median_net_profit_percent: float = 0.0
    max_median_drawdown_percent: float = 30.0

    def __post_init__(self):
        """Validate criteria."""
        if self.min_seed_passes < 0:
            raise ValueError("min_seed_passes must be non-negative")
        if self.max_median_drawdown_percent < 0:
            raise ValueError("max_median_drawdown_percent must be non-negative")

    def to_dict(self) -> Dict[str, float]:
        return {
            "minSeedPasses": self.min_seed_passes,
            "minMedianNetProfitPercent": self.min_median_net_profit_percent,
            "maxMedianDrawdownPercent": self.max_median_drawdown_percent,
        }


@dataclass
class SensitivityReport:
    """Cost sensitivity section of the stress report."""

    criteria: SensitivityCriteria
    seed_pass_count: int
    median_net_profit_percent: float
    median_max_drawdown_percent: float
    median_profit_factor: float
    median_robust_score: float
    seed_runs: List[SeedRun]
    verdict: str
    fail_reasons: List[str] = field(default_factory=list)
    slippage: Optional[SlippageEstimate] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "criteria": self.criteria.to_dict(),
            "seedPassCount": self.seed_pass_count,
            "medianNetProfitPercent": self.median_net_profit_percent,
            "medianMaxDrawdownPercent": self.median_max_drawdown_percent,
            "medianProfitFactor": json_number(self.median_profit_factor),
            "medianRobustScore": self.median_robust_score,
            "seedRuns": [run.to_dict() for run in self.seed_runs],
            "verdict": self.verdict,
            "failReasons": list(self.fail_reasons),
        }
        if self.slippage is not None:
            payload["slippage"] = self.slippage.to_dict()
        return payload


def evaluate_sensitivity(
    seed_runs: Sequence[SeedRun],
    criteria: SensitivityCriteria,
    slippage: Optional[SlippageEstimate] = None,
) -> SensitivityReport:
    """
    Aggregate seed runs that produced a result and apply the criteria.

    Fail reasons: insufficient_seed_passes, non_positive_median_net_profit,
    high_median_drawdown.
    """
    passed = [run for run in seed_runs if run.passed and run.result is not None]
    median_net = median(run.result.net_profit_percent for run in passed)
    median_dd = median(run.result.max_drawdown_percent for run in passed)

    reasons = []
    if len(passed) < criteria.min_seed_passes:
        reasons.append("insufficient_seed_passes")
    if median_net <= criteria.min_median_net_profit_percent:
        reasons.append("non_positive_median_net_profit")
    if median_dd > criteria.max_median_drawdown_percent:
        reasons.append("high_median_drawdown")

    return SensitivityReport(
        criteria=criteria,
        seed_pass_count=len(passed),
        median_net_profit_percent=median_net,
        median_max_drawdown_percent=median_dd,
        median_profit_factor=median(run.result.profit_factor for run in passed),
        median_robust_score=median(run.robust_score for run in passed),
        seed_runs=list(seed_runs),
        verdict="PASS" if not reasons else "FAIL",
        fail_reasons=reasons,
        slippage=slippage,
    )


class FeeSlippageEnsemble:
    """
    Seed ensemble under tick-derived trading costs.

    Example:
        >>> ensemble = FeeSlippageEnsemble(finder, SensitivityCriteria(min_seed_passes=4))
        >>> estimate, costed = ensemble.derive_costs(bars, BacktestSettings(), tick_size=0.01)
        >>> costed.slippage_bps >= 1
        True
    """

    def __init__(self, finder: CandidateFinder, criteria: Optional[SensitivityCriteria] = None):
        self.finder = finder
        self.criteria = criteria or SensitivityCriteria()

        logger.info(
            f"FeeSlippageEnsemble initialized: min_seed_passes={self.criteria.min_seed_passes}, "
            f"max_median_dd={self.criteria.max_median_drawdown_percent:.1f}%"
        )

    @staticmethod
    def derive_costs(
        bars: Sequence[Bar],
        settings: BacktestSettings,
        tick_size: float = DEFAULT_TICK_SIZE,
    ) -> Tuple[SlippageEstimate, BacktestSettings]:
        """Tick-derived slippage estimate and the settings that carry it."""
        estimate = derive_tick_slippage(bars, tick_size)
        return estimate, settings.with_overrides(slippage_bps=estimate.slippage_bps)

    async def run(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        seeds: Sequence[int],
        settings: BacktestSettings,
        slippage: Optional[SlippageEstimate] = None,
        timeframe: str = "",
        tick_size: float = DEFAULT_TICK_SIZE,
    ) -> SensitivityReport:
        """
        Search every seed on the full bar series.

        Args:
            bars: Full, untruncated bar series
            strategy: Strategy under test
            seeds: Search seeds (run sequentially in order)
            settings: Trading settings; when slippage is None the costs are
                derived here from tick_size
            slippage: Estimate already applied to settings
            timeframe: Interval label forwarded to the finder
            tick_size: Tick size used when deriving costs

        Returns:
            SensitivityReport with verdict and fail reasons
        """
        if slippage is None:
            slippage, settings = self.derive_costs(bars, settings, tick_size)

        seed_runs: List[SeedRun] = []
        for seed in seeds:
            seed_runs.append(await self.finder.search(bars, strategy, seed, settings, timeframe))

        report = evaluate_sensitivity(seed_runs, self.criteria, slippage)
        logger.info(
            f"feeSlippageSensitivity={report.verdict} seedPass={report.seed_pass_count}/{len(seed_runs)} "
            f"medianNet={report.median_net_profit_percent:.2f}% "
            f"medianDD={report.median_max_drawdown_percent:.2f}%"
        )
        return report
