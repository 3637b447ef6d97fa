"""
Stress Report Assembler

Combines the OOS blind test, the walk-forward validation and the
fee/slippage sensitivity ensemble into one report. The overall verdict is
PASS only when all three sections pass; there is no weighting or partial
credit.

Reports are immutable artifacts: an existing report file is never patched.
Without force a numbered sibling is written instead
(`sol-1h-rsi_reversion-stress-2.json`); with force the file is replaced
atomically.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from robust_validation.artifacts import next_available_path, sanitize_label, write_json_atomic
from robust_validation.backtest_config import BacktestSettings
from robust_validation.cost_model import SlippageEstimate
from robust_validation.optimization.walk_forward_validator import WalkForwardReport
from robust_validation.validation.fee_slippage_ensemble import SensitivityReport
from robust_validation.validation.oos_blind_tester import OosBlindReport

OOS_SECTION = "oos70_30"
WALK_FORWARD_SECTION = "walkForward3m1m"
SENSITIVITY_SECTION = "feeSlippageSensitivity"


@dataclass(frozen=True)
class StressInputs:
    """Dataset, seeds, split and trading assumptions behind a stress report."""

    data_path: str
    symbol: str
    interval: str
    strategy_key: str
    seeds: List[int]
    train_ratio: float
    train_bars: int
    blind_bars: int
    settings: BacktestSettings
    slippage: SlippageEstimate
    settings_overrides: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataPath": self.data_path,
            "symbol": self.symbol,
            "interval": self.interval,
            "strategyKey": self.strategy_key,
            "seeds": list(self.seeds),
            "split": {
                "trainRatio": self.train_ratio,
                "trainBars": self.train_bars,
                "blindBars": self.blind_bars,
            },
            "trading": {
                "initialCapital": self.settings.initial_capital,
                "positionSizePercent": self.settings.position_size_percent,
                "commissionPercent": self.settings.commission_percent,
                "slippageBps": self.slippage.slippage_bps,
                "rawTickSlippageBps": self.slippage.raw_tick_slippage_bps,
                "tickSize": self.slippage.tick_size,
                "referenceMedianPrice": self.slippage.reference_median_price,
            },
            "backtestSettingsOverrides": dict(self.settings_overrides),
        }


@dataclass
class StressReport:
    """
    Full stress report.

    Example:
        >>> report = StressReport(inputs, oos, walk_forward, sensitivity)
        >>> report.verdict, report.fail_reasons
        ('FAIL', ['walkForward3m1m:low_walk_forward_efficiency'])
    """

    inputs: StressInputs
    oos: OosBlindReport
    walk_forward: WalkForwardReport
    sensitivity: SensitivityReport
    generated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    )

    @property
    def section_verdicts(self) -> Dict[str, str]:
        return {
            OOS_SECTION: self.oos.verdict,
            WALK_FORWARD_SECTION: self.walk_forward.verdict,
            SENSITIVITY_SECTION: self.sensitivity.verdict,
        }

    @property
    def survives_all_three(self) -> bool:
        return all(verdict == "PASS" for verdict in self.section_verdicts.values())

    @property
    def verdict(self) -> str:
        return "PASS" if self.survives_all_three else "FAIL"

    @property
    def fail_reasons(self) -> List[str]:
        """Section-qualified reasons, e.g. 'oos70_30:insufficient_train_seed_passes'."""
        reasons = []
        for section, section_reasons in (
            (OOS_SECTION, self.oos.fail_reasons),
            (WALK_FORWARD_SECTION, self.walk_forward.fail_reasons),
            (SENSITIVITY_SECTION, self.sensitivity.fail_reasons),
        ):
            reasons.extend(f"{section}:{reason}" for reason in section_reasons)
        return reasons

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "inputs": self.inputs.to_dict(),
            OOS_SECTION: self.oos.to_dict(),
            WALK_FORWARD_SECTION: self.walk_forward.to_dict(),
            SENSITIVITY_SECTION: self.sensitivity.to_dict(),
            "overall": {
                "survivesAllThree": self.survives_all_three,
                "verdict": self.verdict,
                "failReasons": self.fail_reasons,
            },
        }


def report_file_name(symbol: str, interval: str, strategy_key: str) -> str:
    """`<symbol lower>-<interval>-<strategy>-stress.json` with unsafe characters replaced."""
    safe_strategy = sanitize_label(strategy_key, replacement="-")
    return f"{symbol.lower()}-{interval}-{safe_strategy}-stress.json"


def default_output_dir(today: Optional[date] = None) -> Path:
    day = today or datetime.now(timezone.utc).date()
    return Path("batch-runs") / f"stress-tests-{day.isoformat()}"


def write_stress_report(
    report: StressReport,
    out_dir: Optional[Path] = None,
    file_name: Optional[str] = None,
    force: bool = False,
) -> Path:
    """
    Persist a stress report as JSON.

    Args:
        report: Assembled report
        out_dir: Output directory (default batch-runs/stress-tests-<date>)
        file_name: Override for the report file name
        force: Replace an existing file instead of writing a numbered sibling

    Returns:
        Path of the written file
    """
    directory = Path(out_dir) if out_dir is not None else default_output_dir()
    name = file_name or report_file_name(
        report.inputs.symbol, report.inputs.interval, report.inputs.strategy_key
    )
    target = directory / name
    if not force:
        target = next_available_path(target)
    elif target.exists():
        logger.warning(f"Replacing existing stress report: {target}")

    write_json_atomic(target, report.to_dict())
    logger.info(f"Stress report written: {target} (overall={report.verdict})")
    return target
