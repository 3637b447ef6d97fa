"""
Random Search Finder - Seeded robust candidate search

Samples parameter sets around a strategy's defaults and filters them
through three robustness stages evaluated on contiguous time folds.

Stages:
    A: trade-count window (stage_a_min_trades, stage_a_max_trades)
    B: positive median fold expectancy and enough profitable folds
       (stage_b_negative_expectancy, stage_b_low_profitable_fold_ratio)
    C: drawdown breach rate and fold return dispersion
       (stage_c_dd_breach, stage_c_fold_variance)

Every search returns its per-cell audit record on the SeedRun, in the same
shape the audit aggregator reads back from run files.

Usage:
    from robust_validation.engines import RandomSearchFinder, SimpleBacktestEngine

    finder = RandomSearchFinder(SimpleBacktestEngine(), FinderSettings(max_runs=60))
    seed_run = asyncio.run(finder.search(bars, strategy, 1337, BacktestSettings(), "1h"))
"""

import asyncio
import math
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from robust_validation.audit.audit_sources import AUDIT_MODE
from robust_validation.backtest_config import (
    BacktestResult,
    BacktestSettings,
    Bar,
    FinderSettings,
    SeedRun,
    StrategyParams,
)
from robust_validation.interfaces import BacktestEngine, CandidateFinder, Strategy, is_toggle_param
from robust_validation.statistics import median, population_std

FOLD_LOOKBACK_BARS = 250
TOP_DECILE_FRACTION = 0.1


def derive_cell_seed(seed: int, strategy_key: str, timeframe: str) -> int:
    """Per-cell RNG seed: the run seed mixed with a stable hash of the cell."""
    return (zlib.crc32(f"{strategy_key}|{timeframe}".encode("utf-8")) ^ int(seed)) & 0xFFFFFFFF


@dataclass
class CandidateEvaluation:
    """Stage metrics for one sampled parameter set."""

    params: StrategyParams
    order: int
    result: BacktestResult
    rejection_reason: Optional[str] = None
    stage_reached: str = "A"
    fold_median_expectancy: float = 0.0
    profitable_fold_ratio: float = 0.0
    dd_breach_rate: float = 0.0
    fold_stability_penalty: float = 0.0
    score: float = -math.inf
    fold_returns: List[float] = field(default_factory=list)


class RandomSearchFinder(CandidateFinder):
    """
    Seeded random-search candidate finder.

    The sampled parameter sets depend only on the seed, the strategy key and
    the timeframe, so two searches with the same inputs are identical.

    Example:
        >>> finder = RandomSearchFinder(engine, FinderSettings(max_runs=120))
        >>> run = await finder.search(train_bars, strategy, seed=1337, settings=settings, timeframe="1h")
        >>> run.passed, run.audit_record["stageCSurvivors"]
    """

    def __init__(self, engine: BacktestEngine, settings: Optional[FinderSettings] = None):
        self.engine = engine
        self.settings = settings or FinderSettings()

        logger.info(
            f"RandomSearchFinder initialized: max_runs={self.settings.max_runs}, "
            f"steps={self.settings.steps}, range={self.settings.range_percent}%, "
            f"min_trades={self.settings.min_trades}, folds={self.settings.folds}"
        )

    # ========================================================================
    # Sampling
    # ========================================================================

    def sample_params(self, strategy: Strategy, rng: np.random.Generator) -> List[StrategyParams]:
        """
        Sample distinct parameter sets; the first is always the defaults.

        Values sit on a grid of `steps` points per side within
        ±range_percent of each default. Integer-like defaults stay integral
        (minimum 1) and toggles are drawn from {0, 1}.
        """
        defaults = strategy.default_params
        offsets = np.linspace(-1.0, 1.0, 2 * self.settings.steps + 1) * (self.settings.range_percent / 100)

        samples = [dict(defaults)]
        seen = {tuple(sorted(defaults.items()))}
        attempts = 0
        while len(samples) < self.settings.max_runs and attempts < self.settings.max_runs * 10:
            attempts += 1
            params = {}
            for name, default in defaults.items():
                if is_toggle_param(name, default):
                    params[name] = int(rng.integers(0, 2))
                    continue
                value = default * (1 + float(rng.choice(offsets)))
                if float(default).is_integer():
                    params[name] = max(1, int(round(value)))
                else:
                    params[name] = round(value, 4)
            key = tuple(sorted(params.items()))
            if key in seen:
                continue
            seen.add(key)
            samples.append(params)
        return samples

    # ========================================================================
    # Evaluation
    # ========================================================================

    def _fold_bounds(self, n: int) -> List[Tuple[int, int]]:
        edges = np.linspace(0, n, self.settings.folds + 1).astype(int)
        return [(int(edges[i]), int(edges[i + 1])) for i in range(self.settings.folds)]

    def _run_fold(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        params: StrategyParams,
        settings: BacktestSettings,
        start: int,
        end: int,
    ) -> BacktestResult:
        buffered_start = max(0, start - FOLD_LOOKBACK_BARS)
        return self.engine.run(bars[buffered_start:end], strategy, params, settings, start_index=start - buffered_start)

    def evaluate_candidate(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        params: StrategyParams,
        settings: BacktestSettings,
        order: int = 0,
    ) -> CandidateEvaluation:
        """
        Run one parameter set through stages A, B and C.

        Returns:
            CandidateEvaluation whose rejection_reason is None for survivors
        """
        cfg = self.settings
        full = self.engine.run(bars, strategy, params, settings)
        evaluation = CandidateEvaluation(params=params, order=order, result=full)

        if full.total_trades < cfg.min_trades:
            evaluation.rejection_reason = "stage_a_min_trades"
            return evaluation
        if full.total_trades > cfg.max_trades:
            evaluation.rejection_reason = "stage_a_max_trades"
            return evaluation

        evaluation.stage_reached = "B"
        folds = [
            self._run_fold(bars, strategy, params, settings, start, end)
            for start, end in self._fold_bounds(len(bars))
        ]
        fold_returns = [f.net_profit_percent for f in folds]
        evaluation.fold_returns = fold_returns
        evaluation.fold_median_expectancy = median(f.expectancy_percent for f in folds if f.total_trades > 0)
        evaluation.profitable_fold_ratio = sum(1 for r in fold_returns if r > 0) / len(folds)
        evaluation.dd_breach_rate = (
            sum(1 for f in folds if f.max_drawdown_percent > cfg.fold_drawdown_limit_percent) / len(folds)
        )
        mean_return = float(np.mean(fold_returns))
        evaluation.fold_stability_penalty = population_std(fold_returns) / max(1.0, abs(mean_return))

        if evaluation.fold_median_expectancy <= 0:
            evaluation.rejection_reason = "stage_b_negative_expectancy"
            return evaluation
        if evaluation.profitable_fold_ratio < cfg.min_profitable_fold_ratio:
            evaluation.rejection_reason = "stage_b_low_profitable_fold_ratio"
            return evaluation

        evaluation.stage_reached = "C"
        if evaluation.dd_breach_rate > cfg.max_dd_breach_rate:
            evaluation.rejection_reason = "stage_c_dd_breach"
        elif evaluation.fold_stability_penalty > cfg.max_fold_stability_penalty:
            evaluation.rejection_reason = "stage_c_fold_variance"

        evaluation.score = (
            evaluation.fold_median_expectancy
            * evaluation.profitable_fold_ratio
            * (1 - evaluation.dd_breach_rate)
            / (1 + evaluation.fold_stability_penalty)
        )
        return evaluation

    def _top_decile(self, pool: List[CandidateEvaluation]) -> List[CandidateEvaluation]:
        ranked = sorted(pool, key=lambda e: (-e.score, e.order))
        size = min(self.settings.top_n, max(1, math.ceil(len(ranked) * TOP_DECILE_FRACTION)))
        return ranked[:size]

    # ========================================================================
    # Search
    # ========================================================================

    async def search(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        seed: int,
        settings: BacktestSettings,
        timeframe: str = "",
    ) -> SeedRun:
        cell_seed = derive_cell_seed(seed, strategy.key, timeframe)
        rng = np.random.default_rng(cell_seed)
        candidates = self.sample_params(strategy, rng)

        evaluations: List[CandidateEvaluation] = []
        for order, params in enumerate(candidates):
            evaluations.append(self.evaluate_candidate(bars, strategy, params, settings, order))
            await asyncio.sleep(0)

        stage_b_pool = [e for e in evaluations if e.stage_reached in ("B", "C")]
        stage_c_pool = [e for e in evaluations if e.stage_reached == "C"]
        survivors = [e for e in stage_c_pool if e.rejection_reason is None]

        rejection_reasons: Dict[str, int] = {}
        for e in evaluations:
            if e.rejection_reason:
                rejection_reasons[e.rejection_reason] = rejection_reasons.get(e.rejection_reason, 0) + 1

        if survivors:
            decision, decision_reason = "PASS", "robust_candidate_found"
        elif not stage_b_pool:
            decision, decision_reason = "FAIL", "no_stage_a_survivors"
        elif not stage_c_pool:
            decision, decision_reason = "FAIL", "no_stage_b_survivors"
        else:
            decision, decision_reason = "FAIL", "no_stage_c_survivors"

        ranking_pool = survivors or stage_c_pool or stage_b_pool
        top = self._top_decile(ranking_pool) if ranking_pool else []
        sampled = len(evaluations)

        audit_record: Dict[str, Any] = {
            "mode": AUDIT_MODE,
            "strategyKey": strategy.key,
            "strategyName": strategy.name or strategy.key,
            "timeframe": timeframe,
            "seed": int(seed),
            "cellSeed": cell_seed,
            "decision": decision,
            "decisionReason": decision_reason,
            "sampledParams": sampled,
            "stageASurvivors": len(stage_b_pool),
            "stageBSurvivors": len(stage_c_pool),
            "stageCSurvivors": len(survivors),
            "passRate": len(survivors) / sampled if sampled else 0.0,
            "topDecileMedianOOSExpectancy": median(e.fold_median_expectancy for e in top),
            "topDecileMedianProfitableFoldRatio": median(e.profitable_fold_ratio for e in top),
            "medianFoldStabilityPenalty": median(e.fold_stability_penalty for e in stage_b_pool),
            "topDecileMedianDDBreachRate": median(e.dd_breach_rate for e in top),
            "robustScore": top[0].score if survivors else 0.0,
            "rejectionReasons": rejection_reasons,
        }

        logger.info(
            f"[seed {seed}] {strategy.key} {timeframe or '-'}: {decision} ({decision_reason}) "
            f"A/B/C={audit_record['stageASurvivors']}/{audit_record['stageBSurvivors']}/"
            f"{audit_record['stageCSurvivors']} of {sampled}"
        )

        if not survivors:
            return SeedRun.no_pass(seed, audit_record=audit_record)

        best = top[0]
        return SeedRun(
            seed=seed,
            passed=True,
            robust_score=best.score,
            pass_rate=audit_record["passRate"],
            stage_c_survivors=len(survivors),
            params=dict(best.params),
            result=best.result,
            decision_reason=decision_reason,
            audit_record=audit_record,
        )
