"""
Shared pytest fixtures

Synthetic bars and a scripted strategy for engine tests; finder doubles
and finder-shaped audit records for the pipeline tests.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from robust_validation.audit.audit_sources import format_audit_line
from robust_validation.backtest_config import (
    BacktestResult,
    BacktestSettings,
    Bar,
    SeedRun,
    StrategyParams,
)
from robust_validation.interfaces import CandidateFinder, Strategy


class ScriptedStrategy(Strategy):
    """Strategy whose entry/exit bars are fixed indices."""

    key = "scripted"
    name = "Scripted"

    def __init__(self, entry_bars: Sequence[int] = (), exit_bars: Sequence[int] = ()):
        self.entry_bars = list(entry_bars)
        self.exit_bars = list(exit_bars)

    @property
    def default_params(self) -> StrategyParams:
        return {"length": 10}

    def generate_signals(self, frame, params):
        entries = pd.Series(False, index=frame.index)
        exits = pd.Series(False, index=frame.index)
        entries.iloc[[i for i in self.entry_bars if i < len(frame)]] = True
        exits.iloc[[i for i in self.exit_bars if i < len(frame)]] = True
        return entries, exits


class PreparedFinder(CandidateFinder):
    """Finder double: returns the SeedRun prepared for each seed and records calls."""

    def __init__(self, runs: Dict[int, SeedRun]):
        self.runs = runs
        self.calls: List[tuple] = []

    async def search(self, bars, strategy, seed, settings, timeframe=""):
        self.calls.append((len(bars), strategy.key, seed, timeframe))
        return self.runs.get(seed, SeedRun.no_pass(seed))


def build_bars(closes: Sequence[float], start: int = 1_700_000_000, step: int = 3600) -> List[Bar]:
    """Bars whose open equals close, one per step seconds."""
    return [
        Bar(time=start + i * step, open=float(c), high=float(c) * 1.001, low=float(c) * 0.999,
            close=float(c), volume=100.0)
        for i, c in enumerate(closes)
    ]


def result_with_net(net_profit_percent: float, drawdown_percent: float = 5.0,
                    initial_capital: float = 10_000.0) -> BacktestResult:
    """BacktestResult with a chosen net profit percent and drawdown."""
    final = initial_capital * (1 + net_profit_percent / 100)
    return BacktestResult(
        initial_capital=initial_capital,
        final_capital=final,
        net_profit=final - initial_capital,
        net_profit_percent=net_profit_percent,
        max_drawdown=initial_capital * drawdown_percent / 100,
        max_drawdown_percent=drawdown_percent,
        profit_factor=1.5,
        win_rate=50.0,
        sharpe_ratio=1.0,
        total_trades=10,
    )


def passing_run(seed: int, params: Optional[StrategyParams] = None) -> SeedRun:
    return SeedRun(
        seed=seed,
        passed=True,
        robust_score=1.0,
        pass_rate=0.1,
        stage_c_survivors=3,
        params=params or {"length": 10},
        result=result_with_net(5.0),
        decision_reason="robust_candidate_found",
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    """Cost-free settings so trade arithmetic is exact."""
    return BacktestSettings(initial_capital=10_000.0, commission_percent=0.0, slippage_bps=0.0)


@pytest.fixture
def ramp_bars():
    """Six bars with opens/closes 100..105."""
    return build_bars([100, 101, 102, 103, 104, 105])


@pytest.fixture
def wave_bars():
    """1200 hourly bars: sine wave around an upward drift (seeded noise)."""
    np.random.seed(42)
    t = np.arange(1200)
    closes = 100 + 0.01 * t + 5 * np.sin(t / 12.0) + np.random.normal(0, 0.3, len(t))
    return build_bars(closes)


def make_audit(strategy_key="rsi_reversion", timeframe="1h", seed=1, decision="PASS",
               decision_reason=None, **metrics):
    """Finder-shaped cell audit dict; metrics use the camelCase audit keys."""
    audit = {
        "mode": "robust_random_wf",
        "strategyKey": strategy_key,
        "strategyName": strategy_key.replace("_", " ").title(),
        "timeframe": timeframe,
        "seed": seed,
        "cellSeed": 1000 + (seed or 0),
        "decision": decision,
        "decisionReason": decision_reason or (
            "robust_candidate_found" if decision == "PASS" else "no_stage_c_survivors"
        ),
        "sampledParams": 120,
        "stageASurvivors": 40,
        "stageBSurvivors": 10,
        "stageCSurvivors": 0,
        "passRate": 0.0,
        "topDecileMedianOOSExpectancy": 0.0,
        "topDecileMedianProfitableFoldRatio": 0.5,
        "medianFoldStabilityPenalty": 0.0,
        "topDecileMedianDDBreachRate": 0.0,
        "robustScore": 0.0,
        "rejectionReasons": {},
    }
    audit.update(metrics)
    return audit


@pytest.fixture
def matrix_audits():
    """Three rsi_reversion/1h seeds (2 PASS) and one failing sma_crossover/4h seed."""
    labels = {"symbol": "SOLUSDT", "tradeFilterMode": "none", "tradeDirection": "long"}
    return [
        make_audit(seed=1, passRate=0.05, stageCSurvivors=3, topDecileMedianDDBreachRate=0.1,
                   medianFoldStabilityPenalty=1.0, robustScore=2.0, topDecileMedianOOSExpectancy=0.4,
                   rejectionReasons={"stage_a_min_trades": 10, "stage_b_negative_expectancy": 4}, **labels),
        make_audit(seed=2, decision="FAIL", passRate=0.0, stageCSurvivors=0, topDecileMedianDDBreachRate=0.3,
                   medianFoldStabilityPenalty=2.5, robustScore=0.0, topDecileMedianOOSExpectancy=0.1,
                   rejectionReasons={"stage_c_dd_breach": 5, "stage_a_min_trades": 2}, **labels),
        make_audit(seed=3, passRate=0.02, stageCSurvivors=2, topDecileMedianDDBreachRate=0.15,
                   medianFoldStabilityPenalty=1.5, robustScore=1.0, topDecileMedianOOSExpectancy=0.3,
                   rejectionReasons={"stage_a_min_trades": 1}, **labels),
        make_audit(strategy_key="sma_crossover", timeframe="4h", seed=1, decision="FAIL",
                   decision_reason="no_stage_a_survivors",
                   rejectionReasons={"stage_a_min_trades": 20, "custom_reject": 1}),
    ]


@pytest.fixture
def run_file(tmp_path, matrix_audits):
    """Seed-run text file: log noise plus one marker line per audit."""
    lines = ["[Finder] starting search", "random noise {not json"]
    lines.extend(format_audit_line(audit) for audit in matrix_audits)
    path = tmp_path / "run-seed-all.txt"
    path.write_text("\n".join(lines) + "\n")
    return path
