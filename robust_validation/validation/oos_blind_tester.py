"""
OOS Blind Split Tester - Train/blind generalization check

Runs the seeded candidate search on the first part of the data only and
backtests each returned parameter set, unmodified, on the held-out tail.

Purpose:
    - Time-causal split by index (no shuffling): train = bars[:split],
      blind = bars[split:]
    - Per-seed blind backtests with the same cost/risk settings as training
    - Consensus parameters (per-parameter median of passing seeds) as a
      diagnostic blind test outside the verdict
    - Verdict with explicit fail reasons

Key Features:
    - The blind segment is never searched or tuned; only train-time
      parameters reach it
    - Seeds without a candidate are excluded from medians (not counted as 0)

Usage:
    from robust_validation.validation import OosBlindSplitTester

    tester = OosBlindSplitTester(finder, engine)
    report = await tester.run(bars, strategy, seeds=[1337, 7331], settings=settings)
    print(report.verdict, report.fail_reasons)
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from robust_validation.backtest_config import (
    BacktestResult,
    BacktestSettings,
    Bar,
    SeedRun,
    StrategyParams,
)
from robust_validation.interfaces import BacktestEngine, CandidateFinder, Strategy
from robust_validation.statistics import finite_values, json_number, median

DEFAULT_TRAIN_RATIO = 0.7


@dataclass(frozen=True)
class OosCriteria:
    """
    OOS blind test pass thresholds.

    Attributes:
        min_train_seed_passes: Seeds whose train search must find a candidate
        min_blind_positive_seeds: Blind results that must be profitable
        min_blind_median_net_profit_percent: Blind median profit must exceed this
    """

    min_train_seed_passes: int = 3
    min_blind_positive_seeds: int = 3
    min_blind_median_net_profit_percent: float = 0.0

    def __post_init__(self):
        """Validate criteria."""
        if self.min_train_seed_passes < 0:
            raise ValueError("min_train_seed_passes must be non-negative")
        if self.min_blind_positive_seeds < 0:
            raise ValueError("min_blind_positive_seeds must be non-negative")

    def to_dict(self) -> Dict[str, float]:
        return {
            "minTrainSeedPasses": self.min_train_seed_passes,
            "minBlindPositiveSeeds": self.min_blind_positive_seeds,
            "minBlindMedianNetProfitPercent": self.min_blind_median_net_profit_percent,
        }


@dataclass(frozen=True)
class OosBlindSeedResult:
    """
    Train search outcome and blind backtest for one seed.

    A blind result only exists for a seed whose train search passed with
    parameters.
    """

    seed: int
    train_passed: bool
    params: Optional[StrategyParams] = None
    blind_result: Optional[BacktestResult] = None

    def __post_init__(self):
        """Validate blind result consistency."""
        if self.blind_result is not None and (not self.train_passed or self.params is None):
            raise ValueError("blind_result requires a passing train search with params")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "trainPassed": self.train_passed,
            "params": dict(self.params) if self.params is not None else None,
            "blindResult": self.blind_result.to_dict() if self.blind_result is not None else None,
        }


@dataclass
class OosBlindReport:
    """Aggregated OOS blind test with verdict."""

    criteria: OosCriteria
    train_bars: int
    blind_bars: int
    train_seed_pass_count: int
    blind_positive_seed_count: int
    blind_median_net_profit_percent: float
    blind_median_max_drawdown_percent: float
    blind_median_profit_factor: float
    seed_results: List[OosBlindSeedResult]
    verdict: str
    fail_reasons: List[str] = field(default_factory=list)
    consensus_params: Optional[StrategyParams] = None
    blind_consensus_result: Optional[BacktestResult] = None

    @property
    def passed(self) -> bool:
        return self.verdict == "PASS"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criteria": self.criteria.to_dict(),
            "trainSeedPassCount": self.train_seed_pass_count,
            "blindPositiveSeedCount": self.blind_positive_seed_count,
            "blindMedianNetProfitPercent": self.blind_median_net_profit_percent,
            "blindMedianMaxDrawdownPercent": self.blind_median_max_drawdown_percent,
            "blindMedianProfitFactor": json_number(self.blind_median_profit_factor),
            "consensusParams": dict(self.consensus_params) if self.consensus_params is not None else None,
            "blindConsensusResult": (
                self.blind_consensus_result.to_dict() if self.blind_consensus_result is not None else None
            ),
            "seedRuns": [r.to_dict() for r in self.seed_results],
            "verdict": self.verdict,
            "failReasons": list(self.fail_reasons),
        }


def split_train_blind(
    bars: Sequence[Bar],
    train_ratio: float = DEFAULT_TRAIN_RATIO,
) -> Tuple[List[Bar], List[Bar]]:
    """
    Split bars by index order.

    The split index is floor(N * train_ratio), clamped to [1, N-1] so both
    segments are non-empty whenever N >= 2.

    Returns:
        (train_bars, blind_bars); together they are exactly the input
    """
    if not 0 < train_ratio < 1:
        raise ValueError("train_ratio must be in (0, 1)")
    n = len(bars)
    split_index = max(1, min(n - 1, int(math.floor(n * train_ratio))))
    return list(bars[:split_index]), list(bars[split_index:])


def build_consensus_params(seed_runs: Sequence[SeedRun]) -> Optional[StrategyParams]:
    """
    Per-parameter median over every passing seed's parameters.

    Parameter keys are the union across passing seeds; non-finite values are
    ignored and a key with no finite value is omitted.

    Returns:
        Consensus parameters, or None when no seed passed
    """
    rows = [run.params for run in seed_runs if run.passed and run.params]
    if not rows:
        return None

    keys: List[str] = []
    for params in rows:
        for key in params:
            if key not in keys:
                keys.append(key)

    consensus: StrategyParams = {}
    for key in keys:
        values = finite_values(params.get(key) for params in rows)
        if values:
            consensus[key] = median(values)
    return consensus


def evaluate_oos(
    seed_results: Sequence[OosBlindSeedResult],
    criteria: OosCriteria,
    train_bars: int = 0,
    blind_bars: int = 0,
) -> OosBlindReport:
    """
    Aggregate per-seed results and apply OOS criteria.

    Args:
        seed_results: One result per seed
        criteria: Pass thresholds
        train_bars: Train segment length (reporting only)
        blind_bars: Blind segment length (reporting only)

    Returns:
        OosBlindReport without consensus diagnostics
    """
    blind_results = [r.blind_result for r in seed_results if r.blind_result is not None]
    train_passes = sum(1 for r in seed_results if r.train_passed)
    positives = sum(1 for b in blind_results if b.net_profit_percent > 0)
    median_net = median(b.net_profit_percent for b in blind_results)

    reasons = []
    if train_passes < criteria.min_train_seed_passes:
        reasons.append("insufficient_train_seed_passes")
    if positives < criteria.min_blind_positive_seeds:
        reasons.append("insufficient_blind_positive_seeds")
    if median_net <= criteria.min_blind_median_net_profit_percent:
        reasons.append("non_positive_blind_median_net_profit")

    return OosBlindReport(
        criteria=criteria,
        train_bars=train_bars,
        blind_bars=blind_bars,
        train_seed_pass_count=train_passes,
        blind_positive_seed_count=positives,
        blind_median_net_profit_percent=median_net,
        blind_median_max_drawdown_percent=median(b.max_drawdown_percent for b in blind_results),
        blind_median_profit_factor=median(b.profit_factor for b in blind_results),
        seed_results=list(seed_results),
        verdict="PASS" if not reasons else "FAIL",
        fail_reasons=reasons,
    )


class OosBlindSplitTester:
    """
    Train/blind split tester.

    Example:
        >>> tester = OosBlindSplitTester(finder, engine, OosCriteria(min_blind_positive_seeds=4))
        >>> report = await tester.run(bars, strategy, [1337, 7331, 2026], settings, timeframe="1h")
        >>> report.train_seed_pass_count, report.blind_positive_seed_count
    """

    def __init__(
        self,
        finder: CandidateFinder,
        engine: BacktestEngine,
        criteria: Optional[OosCriteria] = None,
        train_ratio: float = DEFAULT_TRAIN_RATIO,
    ):
        if not 0 < train_ratio < 1:
            raise ValueError("train_ratio must be in (0, 1)")
        self.finder = finder
        self.engine = engine
        self.criteria = criteria or OosCriteria()
        self.train_ratio = train_ratio

        logger.info(
            f"OosBlindSplitTester initialized: train_ratio={self.train_ratio:.2f}, "
            f"min_train_passes={self.criteria.min_train_seed_passes}, "
            f"min_blind_positive={self.criteria.min_blind_positive_seeds}"
        )

    async def run(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        seeds: Sequence[int],
        settings: BacktestSettings,
        timeframe: str = "",
    ) -> OosBlindReport:
        """
        Run the train search and blind backtest for every seed, in order.

        Args:
            bars: Full ordered bar series
            strategy: Strategy under test
            seeds: Search seeds
            settings: Cost/risk settings shared by train and blind runs
            timeframe: Interval label forwarded to the finder

        Returns:
            OosBlindReport with verdict, fail reasons and consensus diagnostics
        """
        train_bars, blind_bars = split_train_blind(bars, self.train_ratio)
        logger.info(f"OOS split: train={len(train_bars)} blind={len(blind_bars)}")

        train_runs: List[SeedRun] = []
        seed_results: List[OosBlindSeedResult] = []
        for seed in seeds:
            run = await self.finder.search(train_bars, strategy, seed, settings, timeframe)
            train_runs.append(run)

            blind = None
            if run.passed and run.params:
                blind = self.engine.run(blind_bars, strategy, dict(run.params), settings)
                logger.info(
                    f"[seed {seed}] blind net={blind.net_profit_percent:.2f}% "
                    f"dd={blind.max_drawdown_percent:.2f}% trades={blind.total_trades}"
                )
            else:
                logger.info(f"[seed {seed}] train search found no candidate ({run.decision_reason})")

            seed_results.append(
                OosBlindSeedResult(
                    seed=seed,
                    train_passed=run.passed,
                    params=dict(run.params) if run.params is not None else None,
                    blind_result=blind,
                )
            )

        report = evaluate_oos(seed_results, self.criteria, len(train_bars), len(blind_bars))

        consensus = build_consensus_params(train_runs)
        if consensus is not None:
            report.consensus_params = consensus
            report.blind_consensus_result = self.engine.run(
                blind_bars, strategy, strategy.resolve_params(consensus), settings
            )

        logger.info(
            f"oos={report.verdict} trainPass={report.train_seed_pass_count}/{len(seed_results)} "
            f"blindPositive={report.blind_positive_seed_count} "
            f"blindMedianNet={report.blind_median_net_profit_percent:.2f}%"
        )
        return report
