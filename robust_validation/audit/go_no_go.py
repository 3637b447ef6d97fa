"""
Go/No-Go Report - Policy gate over audit summary cells

Applies a GoNoGoPolicy to every cell of an AuditSummary. A cell is GO when
it meets every threshold; the overall verdict is GO when at least one cell
is GO.

No-go reasons (checked in this order):
    insufficient_seed_runs         runs < min_seed_runs
    low_seed_pass_count            passCount < min_seed_passes
    low_median_stage_c_survivors   medianStageCSurvivors < min_median_stage_c_survivors
    low_median_stage_c_pass_rate   medianCellPassRate < min_median_cell_pass_rate
    high_median_dd_breach_rate     medianDDBreachRate > max_median_dd_breach_rate
    high_median_fold_variance      medianFoldStabilityPenalty > max_median_fold_stability_penalty

Usage:
    from robust_validation.audit import GoNoGoPolicy, build_report

    report = build_report(aggregation.summary, GoNoGoPolicy(min_seed_passes=4))
    print(report.overall_verdict, report.go_cell_count)
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from loguru import logger

from robust_validation.audit.audit_aggregator import AuditSummary, CellSummary
from robust_validation.exceptions import PolicyError
from robust_validation.statistics import sorted_counts

TOP_GO_CELLS = 10

NOGO_REASON_LABELS = {
    "insufficient_seed_runs": "Not enough seeded runs",
    "low_seed_pass_count": "Seed pass rule failed",
    "low_median_stage_c_survivors": "Stage C survivor density too low",
    "low_median_stage_c_pass_rate": "Stage C pass rate too low",
    "high_median_dd_breach_rate": "Drawdown breach rate too high",
    "high_median_fold_variance": "Fold variance too high",
}


@dataclass(frozen=True)
class GoNoGoPolicy:
    """
    Per-cell go/no-go thresholds.

    Rates are ratios in [0, 1]; use parse_ratio to accept percent input.

    Example:
        >>> GoNoGoPolicy(min_seed_runs=3, min_seed_passes=4)
        Traceback (most recent call last):
        PolicyError: Invalid policy: min seed passes cannot exceed min seed runs
    """

    min_seed_runs: int = 5
    min_seed_passes: int = 3
    min_median_cell_pass_rate: float = 0.01
    min_median_stage_c_survivors: float = 2.0
    max_median_dd_breach_rate: float = 0.20
    max_median_fold_stability_penalty: float = 1.8

    def __post_init__(self):
        """Validate policy values."""
        for name in ("min_seed_runs", "min_seed_passes", "min_median_stage_c_survivors",
                     "max_median_fold_stability_penalty"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise PolicyError(f"Invalid policy: {name} must be a non-negative number")
        for name in ("min_median_cell_pass_rate", "max_median_dd_breach_rate"):
            value = getattr(self, name)
            if not math.isfinite(value) or not 0 <= value <= 1:
                raise PolicyError(f"Invalid policy: {name} must be between 0 and 1")
        if self.min_seed_passes > self.min_seed_runs:
            raise PolicyError("Invalid policy: min seed passes cannot exceed min seed runs")

    def to_dict(self) -> Dict[str, float]:
        return {
            "minSeedRuns": self.min_seed_runs,
            "minSeedPasses": self.min_seed_passes,
            "minMedianCellPassRate": self.min_median_cell_pass_rate,
            "minMedianStageCSurvivors": self.min_median_stage_c_survivors,
            "maxMedianDDBreachRate": self.max_median_dd_breach_rate,
            "maxMedianFoldStabilityPenalty": self.max_median_fold_stability_penalty,
        }


# ============================================================================
# Flag parsing
# ============================================================================

def parse_ratio(raw: Any, flag_name: str) -> float:
    """
    Parse a ratio given either as a fraction or as a percent.

    Values above 1 are read as percents (20 -> 0.20).

    Raises:
        ValueError: Not a number, or outside [0, 1] after conversion
    """
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {flag_name}: {raw}") from None
    if not math.isfinite(value):
        raise ValueError(f"Invalid {flag_name}: {raw}")
    ratio = value / 100 if value > 1 else value
    if ratio < 0 or ratio > 1:
        raise ValueError(f"Out of range {flag_name}: {raw}")
    return ratio


def parse_non_negative_number(raw: Any, flag_name: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {flag_name}: {raw}") from None
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"Invalid {flag_name}: {raw}")
    return value


def parse_non_negative_int(raw: Any, flag_name: str) -> int:
    return int(math.floor(parse_non_negative_number(raw, flag_name)))


# ============================================================================
# Evaluation
# ============================================================================

@dataclass
class CellVerdict:
    """A summary cell with its policy verdict."""

    cell: CellSummary
    verdict: str
    no_go_reasons: List[str] = field(default_factory=list)

    @property
    def no_go_reason_labels(self) -> List[str]:
        return [NOGO_REASON_LABELS.get(reason, reason) for reason in self.no_go_reasons]

    def to_dict(self) -> Dict[str, Any]:
        payload = self.cell.to_dict()
        payload.update(
            {
                "verdict": self.verdict,
                "noGoReasons": list(self.no_go_reasons),
                "noGoReasonLabels": self.no_go_reason_labels,
            }
        )
        return payload

    def to_top_dict(self) -> Dict[str, Any]:
        cell = self.cell
        return {
            "symbol": cell.symbol,
            "strategyKey": cell.strategy_key,
            "strategyName": cell.strategy_name,
            "timeframe": cell.timeframe,
            "tradeFilterMode": cell.trade_filter_mode,
            "tradeDirection": cell.trade_direction,
            "passCount": cell.pass_count,
            "runs": cell.runs,
            "seedPassRate": cell.seed_pass_rate,
            "medianCellPassRate": cell.median_cell_pass_rate,
            "medianStageCSurvivors": cell.median_stage_c_survivors,
            "medianDDBreachRate": cell.median_dd_breach_rate,
            "medianFoldStabilityPenalty": cell.median_fold_stability_penalty,
        }


def evaluate_cell(cell: CellSummary, policy: GoNoGoPolicy) -> CellVerdict:
    """Check one cell against the policy."""
    reasons = []
    if cell.runs < policy.min_seed_runs:
        reasons.append("insufficient_seed_runs")
    if cell.pass_count < policy.min_seed_passes:
        reasons.append("low_seed_pass_count")
    if cell.median_stage_c_survivors < policy.min_median_stage_c_survivors:
        reasons.append("low_median_stage_c_survivors")
    if cell.median_cell_pass_rate < policy.min_median_cell_pass_rate:
        reasons.append("low_median_stage_c_pass_rate")
    if cell.median_dd_breach_rate > policy.max_median_dd_breach_rate:
        reasons.append("high_median_dd_breach_rate")
    if cell.median_fold_stability_penalty > policy.max_median_fold_stability_penalty:
        reasons.append("high_median_fold_variance")

    return CellVerdict(cell=cell, verdict="GO" if not reasons else "NO_GO", no_go_reasons=reasons)


@dataclass
class GoNoGoReport:
    """Go/no-go verdicts for every cell of a summary."""

    policy: GoNoGoPolicy
    cells: List[CellVerdict]

    @property
    def go_cells(self) -> List[CellVerdict]:
        return [c for c in self.cells if c.verdict == "GO"]

    @property
    def go_cell_count(self) -> int:
        return len(self.go_cells)

    @property
    def no_go_cell_count(self) -> int:
        return len(self.cells) - self.go_cell_count

    @property
    def overall_verdict(self) -> str:
        return "GO" if self.go_cells else "NO_GO"

    @property
    def no_go_reason_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for cell in self.cells:
            for reason in cell.no_go_reasons:
                counts[reason] = counts.get(reason, 0) + 1
        return sorted_counts(counts)

    @property
    def top_go_cells(self) -> List[CellVerdict]:
        """GO cells ranked by passCount, seedPassRate, medianStageCSurvivors, medianCellPassRate."""
        ranked = sorted(
            self.go_cells,
            key=lambda v: (
                -v.cell.pass_count,
                -v.cell.seed_pass_rate,
                -v.cell.median_stage_c_survivors,
                -v.cell.median_cell_pass_rate,
            ),
        )
        return ranked[:TOP_GO_CELLS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy.to_dict(),
            "overallVerdict": self.overall_verdict,
            "goCellCount": self.go_cell_count,
            "noGoCellCount": self.no_go_cell_count,
            "noGoReasonCounts": self.no_go_reason_counts,
            "topGoCells": [v.to_top_dict() for v in self.top_go_cells],
            "cells": [v.to_dict() for v in self.cells],
        }


def build_report(summary: AuditSummary, policy: GoNoGoPolicy) -> GoNoGoReport:
    """
    Evaluate every summary cell.

    Args:
        summary: Aggregated audit summary
        policy: Thresholds to apply

    Returns:
        GoNoGoReport in the summary's cell order
    """
    report = GoNoGoReport(policy=policy, cells=[evaluate_cell(cell, policy) for cell in summary.cells])
    logger.info(
        f"Go/No-Go: {report.overall_verdict} "
        f"(GO cells {report.go_cell_count}, NO_GO cells {report.no_go_cell_count})"
    )
    return report
