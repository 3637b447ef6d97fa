"""
Unit Tests for RandomSearchFinder

Test Coverage:
  - Cell seed derivation
  - Parameter sampling (defaults first, distinct, integral)
  - Stage A rejection and FAIL decisions with a stubbed engine
  - Audit record shape and determinism on real bars

Usage:
    pytest tests/engines/test_random_search_finder.py -v
"""

import asyncio
from unittest.mock import MagicMock

import numpy as np
import pytest

from robust_validation.audit.audit_sources import AUDIT_MODE
from robust_validation.backtest_config import BacktestResult, FinderSettings
from robust_validation.engines import (
    RandomSearchFinder,
    SimpleBacktestEngine,
    derive_cell_seed,
    resolve_strategies,
)

AUDIT_KEYS = {
    "mode", "strategyKey", "strategyName", "timeframe", "seed", "cellSeed",
    "decision", "decisionReason", "sampledParams", "stageASurvivors",
    "stageBSurvivors", "stageCSurvivors", "passRate", "topDecileMedianOOSExpectancy",
    "topDecileMedianProfitableFoldRatio", "medianFoldStabilityPenalty",
    "topDecileMedianDDBreachRate", "robustScore", "rejectionReasons",
}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def small_settings():
    """Small search so real-engine tests stay quick."""
    return FinderSettings(max_runs=6, min_trades=1, folds=2, top_n=3)


@pytest.fixture
def idle_engine():
    """Engine stub whose backtests never trade."""
    engine = MagicMock()
    engine.run.return_value = BacktestResult.from_trades([], [10_000.0], 10_000.0)
    return engine


# ============================================================================
# Seeds and sampling
# ============================================================================

class TestCellSeed:
    """Test derive_cell_seed."""

    def test_stable(self):
        assert derive_cell_seed(1337, "sma_crossover", "1h") == derive_cell_seed(1337, "sma_crossover", "1h")

    def test_depends_on_cell(self):
        base = derive_cell_seed(1337, "sma_crossover", "1h")
        assert base != derive_cell_seed(1337, "sma_crossover", "4h")
        assert base != derive_cell_seed(1337, "rsi_reversion", "1h")
        assert base != derive_cell_seed(7331, "sma_crossover", "1h")

    def test_unsigned_32_bit(self):
        assert 0 <= derive_cell_seed(-1, "x", "y") <= 0xFFFFFFFF


class TestSampling:
    """Test sample_params."""

    def test_defaults_first_and_distinct(self, idle_engine):
        finder = RandomSearchFinder(idle_engine, FinderSettings(max_runs=20))
        strategy = resolve_strategies(["sma_crossover"])[0]
        samples = finder.sample_params(strategy, np.random.default_rng(1))

        assert samples[0] == strategy.default_params
        keys = {tuple(sorted(s.items())) for s in samples}
        assert len(keys) == len(samples)
        assert len(samples) <= 20

    def test_integral_and_toggle_values(self, idle_engine):
        finder = RandomSearchFinder(idle_engine, FinderSettings(max_runs=20))
        strategy = resolve_strategies(["sma_crossover"])[0]
        for params in finder.sample_params(strategy, np.random.default_rng(2)):
            assert isinstance(params["fastPeriod"], int)
            assert params["fastPeriod"] >= 1
            assert params["useTrendFilter"] in (0, 1)

    def test_range_bounds(self, idle_engine):
        """Values stay within rangePercent of the default."""
        finder = RandomSearchFinder(idle_engine, FinderSettings(max_runs=30, range_percent=20))
        strategy = resolve_strategies(["rsi_reversion"])[0]
        for params in finder.sample_params(strategy, np.random.default_rng(3)):
            assert 70 * 0.8 - 1 <= params["overbought"] <= 70 * 1.2 + 1


# ============================================================================
# Search
# ============================================================================

class TestSearchDecisions:
    """Test decisions with a stubbed engine."""

    def test_no_trades_fails_stage_a(self, idle_engine, wave_bars, settings):
        finder = RandomSearchFinder(idle_engine, FinderSettings(max_runs=5))
        strategy = resolve_strategies(["rsi_reversion"])[0]

        run = asyncio.run(finder.search(wave_bars, strategy, 1337, settings, "1h"))

        assert not run.passed
        assert run.params is None
        assert run.decision_reason == "no_pass"
        audit = run.audit_record
        assert audit["decision"] == "FAIL"
        assert audit["decisionReason"] == "no_stage_a_survivors"
        assert audit["rejectionReasons"] == {"stage_a_min_trades": audit["sampledParams"]}
        assert audit["stageASurvivors"] == 0
        assert audit["robustScore"] == 0.0


class TestSearchAudit:
    """Test the audit record on real bars."""

    def test_audit_record_shape(self, wave_bars, settings, small_settings):
        finder = RandomSearchFinder(SimpleBacktestEngine(), small_settings)
        strategy = resolve_strategies(["sma_crossover"])[0]

        run = asyncio.run(finder.search(wave_bars, strategy, 1337, settings, "1h"))
        audit = run.audit_record

        assert set(audit) == AUDIT_KEYS
        assert audit["mode"] == AUDIT_MODE
        assert audit["seed"] == 1337
        assert audit["cellSeed"] == derive_cell_seed(1337, "sma_crossover", "1h")
        assert audit["sampledParams"] <= small_settings.max_runs
        assert audit["stageASurvivors"] >= audit["stageBSurvivors"] >= audit["stageCSurvivors"]
        assert audit["decision"] == ("PASS" if run.passed else "FAIL")
        if run.passed:
            assert run.params is not None
            assert run.stage_c_survivors == audit["stageCSurvivors"]

    def test_same_seed_same_run(self, wave_bars, settings, small_settings):
        finder = RandomSearchFinder(SimpleBacktestEngine(), small_settings)
        strategy = resolve_strategies(["rsi_reversion"])[0]

        first = asyncio.run(finder.search(wave_bars, strategy, 2026, settings, "1h"))
        second = asyncio.run(finder.search(wave_bars, strategy, 2026, settings, "1h"))

        assert first.audit_record == second.audit_record
        assert first.params == second.params
