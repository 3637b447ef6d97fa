"""
Collaborator Interfaces

Abstract seams between the validation pipeline and the components it treats
as black boxes: strategies, the backtest engine and the seeded candidate
search. The pipeline only depends on these classes; concrete reference
implementations live in robust_validation.engines.

Classes:
  - Strategy: Parameterized entry/exit signal generator
  - BacktestEngine: Deterministic trade simulation
  - CandidateFinder: Seeded stochastic parameter search
"""

import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from robust_validation.backtest_config import (
    BacktestResult,
    BacktestSettings,
    Bar,
    SeedRun,
    StrategyParams,
)

TOGGLE_PARAM_PATTERN = re.compile(r"^use[A-Z]")


def is_toggle_param(name: str, default: float) -> bool:
    """Boolean-like parameter: name follows the useXxx convention and default is 0 or 1."""
    return bool(TOGGLE_PARAM_PATTERN.match(name)) and default in (0, 1)


class Strategy(ABC):
    """
    Parameterized signal generator.

    Subclasses declare a registry key, a display name, default parameters and
    optionally the subset of parameters tuned by walk-forward optimization.
    """

    key: str = ""
    name: str = ""

    @property
    @abstractmethod
    def default_params(self) -> StrategyParams:
        """Default parameter values."""
        pass

    @property
    def walk_forward_params(self) -> Optional[List[str]]:
        """Parameters tuned by walk-forward (None = every default parameter)."""
        return None

    @abstractmethod
    def generate_signals(
        self,
        frame: pd.DataFrame,
        params: StrategyParams,
    ) -> Tuple[pd.Series, pd.Series]:
        """
        Generate entry and exit signals.

        Args:
            frame: OHLCV DataFrame (time, open, high, low, close, volume)
            params: Parameter values

        Returns:
            Tuple of (entries, exits) boolean Series aligned with frame
        """
        pass

    def resolve_params(self, overrides: Optional[StrategyParams] = None) -> StrategyParams:
        """Defaults merged with overrides."""
        params = dict(self.default_params)
        if overrides:
            params.update(overrides)
        return params


class BacktestEngine(ABC):
    """Deterministic trade simulation over a bar series."""

    @abstractmethod
    def run(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        params: StrategyParams,
        settings: BacktestSettings,
        start_index: int = 0,
    ) -> BacktestResult:
        """
        Simulate trades.

        Bars before start_index are warm-up history: indicators see them,
        but no trade may open there and the equity curve starts at
        start_index with settings.initial_capital.

        Args:
            bars: Ordered bars
            strategy: Signal generator
            params: Parameter values (read-only)
            settings: Capital, sizing and cost assumptions
            start_index: First tradable bar

        Returns:
            BacktestResult for the tradable segment
        """
        pass


class CandidateFinder(ABC):
    """
    Seeded stochastic parameter search.

    A search is fully determined by (bars, strategy, seed, settings). Its
    audit record is returned on the SeedRun rather than written to a shared
    log.
    """

    @abstractmethod
    async def search(
        self,
        bars: Sequence[Bar],
        strategy: Strategy,
        seed: int,
        settings: BacktestSettings,
        timeframe: str = "",
    ) -> SeedRun:
        """
        Search for a robust candidate.

        Args:
            bars: Bars the search may use
            strategy: Strategy to parameterize
            seed: Random seed
            settings: Capital, sizing and cost assumptions
            timeframe: Interval label recorded on the audit record

        Returns:
            SeedRun with params/result when a candidate passed,
            otherwise SeedRun(passed=False, decision_reason=...)
        """
        pass
