"""
Stress Test Runner - End-to-end robustness stress tests for one strategy

Loads a dataset, runs the three stress angles in order and writes the
assembled report.

Pipeline:
    1. Load dataset, trim a still-forming candle, require >= 1000 bars
    2. Resolve the strategy (unknown keys are fatal)
    3. Derive tick-based slippage and apply it to the trading settings
    4. OOS blind split test (70/30 by default)
    5. Walk-forward validation (3 month optimize / 1 month test on 1h bars)
    6. Fee/slippage sensitivity ensemble on the full dataset
    7. Assemble and persist the stress report

Any failure inside a seed or window aborts the run; no partial report is
written.

Usage:
    from robust_validation.validation import StressTestOptions, StressTestRunner

    runner = StressTestRunner()
    report, path = await runner.run(StressTestOptions(data_path="SOLUSDT-1h.json", strategy_key="rsi_reversion"))
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from robust_validation.backtest_config import (
    BacktestSettings,
    FinderSettings,
    StrategyParams,
    WalkForwardSettings,
)
from robust_validation.cost_model import DEFAULT_TICK_SIZE
from robust_validation.data_loader import load_dataset, require_min_bars, trim_to_closed_candles
from robust_validation.engines import RandomSearchFinder, SimpleBacktestEngine, resolve_strategies
from robust_validation.interfaces import BacktestEngine, CandidateFinder
from robust_validation.optimization.walk_forward_optimizer import WalkForwardOptimizer
from robust_validation.optimization.walk_forward_validator import WalkForwardCriteria, WalkForwardValidator
from robust_validation.validation.fee_slippage_ensemble import FeeSlippageEnsemble, SensitivityCriteria
from robust_validation.validation.oos_blind_tester import (
    DEFAULT_TRAIN_RATIO,
    OosBlindSplitTester,
    OosCriteria,
)
from robust_validation.validation.stress_report import StressInputs, StressReport, write_stress_report

DEFAULT_SEEDS = [1337, 7331, 2026, 4242, 9001]
DEFAULT_STRATEGY_KEY = "sma_crossover"
UNKNOWN_LABEL = "UNKNOWN"

MIN_FINDER_MAX_RUNS = 20
MIN_WF_MAX_COMBINATIONS = 80
MIN_WF_OPTIMIZATION_WINDOW_BARS = 100
MIN_WF_TEST_WINDOW_BARS = 50


@dataclass
class StressTestOptions:
    """
    Stress test inputs.

    Search sizes are clamped to workable minimums: finder max runs >= 20,
    walk-forward combinations >= 80, optimization window >= 100 bars and
    test window >= 50 bars.
    """

    data_path: str
    strategy_key: str = DEFAULT_STRATEGY_KEY
    tick_size: float = DEFAULT_TICK_SIZE
    seeds: List[int] = field(default_factory=lambda: list(DEFAULT_SEEDS))
    out_dir: Optional[str] = None
    output_file_name: Optional[str] = None
    force: bool = False

    # Trading
    initial_capital: float = 10_000.0
    position_size_percent: float = 100.0
    commission_percent: float = 0.1
    fixed_trade_amount: float = 1_000.0
    settings_overrides: Dict[str, Any] = field(default_factory=dict)
    strategy_params: Optional[StrategyParams] = None

    # Finder
    finder_max_runs: int = 120
    finder_range_percent: float = 35.0
    finder_steps: int = 3
    finder_top_n: int = 12
    finder_min_trades: float = 40

    # Walk-forward
    wf_max_combinations: int = 180
    wf_optimization_window_bars: int = 24 * 30 * 3
    wf_test_window_bars: int = 24 * 30

    train_ratio: float = DEFAULT_TRAIN_RATIO
    now: Optional[float] = None

    def __post_init__(self):
        """Validate and normalize options."""
        if not self.data_path:
            raise ValueError("data_path is required")
        if not str(self.strategy_key or "").strip():
            raise ValueError("strategy_key is required")
        self.strategy_key = str(self.strategy_key).strip()
        if not self.seeds:
            self.seeds = list(DEFAULT_SEEDS)
        if not self.tick_size or self.tick_size <= 0:
            self.tick_size = DEFAULT_TICK_SIZE

    def backtest_settings(self) -> BacktestSettings:
        base = BacktestSettings(
            initial_capital=self.initial_capital,
            position_size_percent=self.position_size_percent,
            commission_percent=self.commission_percent,
            fixed_trade_amount=self.fixed_trade_amount,
        )
        return base.with_overrides(**self.settings_overrides) if self.settings_overrides else base

    def finder_settings(self) -> FinderSettings:
        return FinderSettings(
            top_n=max(1, int(self.finder_top_n)),
            steps=max(1, int(self.finder_steps)),
            range_percent=max(0.0, float(self.finder_range_percent)),
            max_runs=max(MIN_FINDER_MAX_RUNS, int(self.finder_max_runs)),
            min_trades=max(0.0, float(self.finder_min_trades)),
        )

    def walk_forward_settings(self) -> WalkForwardSettings:
        return WalkForwardSettings(
            optimization_window_bars=max(MIN_WF_OPTIMIZATION_WINDOW_BARS, int(self.wf_optimization_window_bars)),
            test_window_bars=max(MIN_WF_TEST_WINDOW_BARS, int(self.wf_test_window_bars)),
            max_combinations=max(MIN_WF_MAX_COMBINATIONS, int(self.wf_max_combinations)),
        )


class StressTestRunner:
    """
    Runs OOS, walk-forward and sensitivity stress tests sequentially.

    The engine and finder are injectable; by default the reference
    SimpleBacktestEngine and a RandomSearchFinder sized from the options
    are used.

    Example:
        >>> runner = StressTestRunner(wf_criteria=WalkForwardCriteria(min_walk_forward_efficiency=0.5))
        >>> report, path = await runner.run(options)
        >>> report.verdict
        'FAIL'
    """

    def __init__(
        self,
        engine: Optional[BacktestEngine] = None,
        finder: Optional[CandidateFinder] = None,
        oos_criteria: Optional[OosCriteria] = None,
        wf_criteria: Optional[WalkForwardCriteria] = None,
        sensitivity_criteria: Optional[SensitivityCriteria] = None,
    ):
        self.engine = engine or SimpleBacktestEngine()
        self.finder = finder
        self.oos_criteria = oos_criteria or OosCriteria()
        self.wf_criteria = wf_criteria or WalkForwardCriteria()
        self.sensitivity_criteria = sensitivity_criteria or SensitivityCriteria()

        logger.info("StressTestRunner initialized")

    async def run(self, options: StressTestOptions) -> Tuple[StressReport, Path]:
        """
        Execute the stress tests and write the report.

        Returns:
            (report, written_path)

        Raises:
            DatasetError: Unreadable dataset or fewer than 1000 closed bars
            UnknownStrategyError: Strategy key not registered
            WalkForwardError: Dataset too short for one walk-forward window
        """
        dataset = load_dataset(options.data_path)
        symbol = dataset.symbol or UNKNOWN_LABEL
        interval = dataset.interval or UNKNOWN_LABEL

        bars = trim_to_closed_candles(dataset.bars, interval, now=options.now)
        require_min_bars(bars)

        overrides = {options.strategy_key: options.strategy_params} if options.strategy_params else None
        [strategy] = resolve_strategies([options.strategy_key], overrides)

        finder = self.finder or RandomSearchFinder(self.engine, options.finder_settings())
        ensemble = FeeSlippageEnsemble(finder, self.sensitivity_criteria)
        slippage, settings = ensemble.derive_costs(bars, options.backtest_settings(), options.tick_size)

        tester = OosBlindSplitTester(finder, self.engine, self.oos_criteria, options.train_ratio)
        logger.info(
            f"Stress test: {symbol} {interval} strategy={strategy.key} bars={len(bars)} "
            f"seeds={','.join(str(s) for s in options.seeds)}"
        )

        oos = await tester.run(bars, strategy, options.seeds, settings, timeframe=interval)

        optimizer = WalkForwardOptimizer(self.engine, options.walk_forward_settings())
        validator = WalkForwardValidator(optimizer, self.wf_criteria)
        walk_forward = await validator.validate(
            bars, strategy, settings, max_combinations=optimizer.settings.max_combinations
        )

        sensitivity = await ensemble.run(
            bars, strategy, options.seeds, settings, slippage=slippage, timeframe=interval
        )

        inputs = StressInputs(
            data_path=str(Path(options.data_path).resolve()),
            symbol=symbol,
            interval=interval,
            strategy_key=strategy.key,
            seeds=list(options.seeds),
            train_ratio=options.train_ratio,
            train_bars=oos.train_bars,
            blind_bars=oos.blind_bars,
            settings=settings,
            slippage=slippage,
            settings_overrides=dict(options.settings_overrides),
        )
        report = StressReport(inputs=inputs, oos=oos, walk_forward=walk_forward, sensitivity=sensitivity)

        out_dir = Path(options.out_dir) if options.out_dir else None
        path = write_stress_report(report, out_dir, options.output_file_name, force=options.force)

        logger.info(
            f"overall={report.verdict}"
            + (f" reasons={','.join(report.fail_reasons)}" if report.fail_reasons else "")
        )
        return report, path
