"""
Audit Aggregator - Summarize seed-run audit records per cell

Groups normalized AuditRecords into cells keyed by (strategyKey, timeframe)
and computes seed pass rates, robust medians and reason histograms. The
table and JSON renderings in report_formatter both read the AuditSummary
built here.

Reject reasons are bucketed by stage using their prefix:
    stage_a_* -> A, stage_b_* -> B, stage_c_* -> C, anything else -> other

Usage:
    from robust_validation.audit import aggregate_files

    aggregation = aggregate_files(["runs/run-seed-1337.txt", "runs/run-seed-7331.txt"])
    for cell in aggregation.summary.cells:
        print(cell.label, cell.pass_count, cell.runs)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger

from robust_validation.audit.audit_sources import AuditRecord, AuditWarnings, collect_records
from robust_validation.exceptions import NoAuditRecordsError
from robust_validation.statistics import median, sorted_counts

STAGES = ("A", "B", "C", "other")
MIXED_LABEL = "*"


def reject_reason_stage(reason: str) -> str:
    """Stage bucket of a candidate reject reason."""
    normalized = str(reason).lower()
    for stage in ("a", "b", "c"):
        if normalized.startswith(f"stage_{stage}_"):
            return stage.upper()
    return "other"


def empty_stage_counts() -> Dict[str, float]:
    return {stage: 0 for stage in STAGES}


def top_reason(counts: Dict[str, float]) -> str:
    """Most frequent reason; ties go to the alphabetically first name."""
    if not counts:
        return ""
    return min(counts.items(), key=lambda item: (-item[1], item[0]))[0]


def _add_counts(target: Dict[str, float], counts: Dict[str, float]) -> None:
    for reason, count in counts.items():
        target[reason] = target.get(reason, 0) + count


def _add_stage_counts(target: Dict[str, float], counts: Dict[str, float]) -> None:
    for reason, count in counts.items():
        target[reject_reason_stage(reason)] += count


def _shared_label(values: Sequence[Optional[str]]) -> Optional[str]:
    present = {v for v in values if v}
    if not present:
        return None
    return present.pop() if len(present) == 1 else MIXED_LABEL


def _row_sort_key(record: AuditRecord) -> Tuple[int, int, str]:
    if record.seed is None:
        return (1, 0, record.source_file)
    return (0, record.seed, record.source_file)


@dataclass
class SeedSummary:
    """One seed's row inside a cell."""

    seed: Optional[int]
    decision: str
    decision_reason: str
    pass_rate: float
    robust_score: float
    stage_c_survivors: float
    dd_breach_rate: float
    fold_stability_penalty: float
    rejection_reasons: Dict[str, float]

    @classmethod
    def from_record(cls, record: AuditRecord) -> "SeedSummary":
        return cls(
            seed=record.seed,
            decision=record.decision,
            decision_reason=record.decision_reason,
            pass_rate=record.pass_rate,
            robust_score=record.robust_score,
            stage_c_survivors=record.stage_c_survivors,
            dd_breach_rate=record.top_decile_median_dd_breach_rate,
            fold_stability_penalty=record.median_fold_stability_penalty,
            rejection_reasons=dict(record.rejection_reasons),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "decision": self.decision,
            "decisionReason": self.decision_reason,
            "passRate": self.pass_rate,
            "robustScore": self.robust_score,
            "stageCSurvivors": self.stage_c_survivors,
            "ddBreachRate": self.dd_breach_rate,
            "foldStabilityPenalty": self.fold_stability_penalty,
            "rejectionReasons": dict(self.rejection_reasons),
        }


@dataclass
class CellSummary:
    """
    Aggregated seed results for one (strategy, timeframe) cell.

    Attributes:
        runs: Number of records (seed runs) in the cell
        pass_count / fail_count: Records by decision
        seed_pass_rate: pass_count / runs
        median_*: Medians over the cell's records
        fail_reason_counts: decisionReason histogram over FAIL records
        reject_reason_counts: Candidate reject reasons summed over records
        reject_reason_counts_by_stage: reject_reason_counts bucketed A/B/C/other
    """

    strategy_key: str
    strategy_name: str
    timeframe: str
    runs: int
    seeds: List[int]
    pass_count: int
    fail_count: int
    seed_pass_rate: float
    median_cell_pass_rate: float
    median_robust_score: float
    median_top_decile_expectancy: float
    median_fold_stability_penalty: float
    median_dd_breach_rate: float
    median_stage_c_survivors: float
    fail_reason_counts: Dict[str, float] = field(default_factory=dict)
    reject_reason_counts: Dict[str, float] = field(default_factory=dict)
    reject_reason_counts_by_stage: Dict[str, float] = field(default_factory=empty_stage_counts)
    per_seed: List[SeedSummary] = field(default_factory=list)
    symbol: Optional[str] = None
    trade_filter_mode: Optional[str] = None
    trade_direction: Optional[str] = None

    @property
    def top_fail_reason(self) -> str:
        return top_reason(self.fail_reason_counts)

    @property
    def top_reject_reason(self) -> str:
        return top_reason(self.reject_reason_counts)

    @property
    def label(self) -> str:
        """`symbol:timeframe:strategyKey:filter:direction`, skipping unknown parts."""
        parts = [self.symbol, self.timeframe, self.strategy_key, self.trade_filter_mode, self.trade_direction]
        return ":".join(part for part in parts if part)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategyKey": self.strategy_key,
            "strategyName": self.strategy_name,
            "timeframe": self.timeframe,
            "symbol": self.symbol,
            "tradeFilterMode": self.trade_filter_mode,
            "tradeDirection": self.trade_direction,
            "runs": self.runs,
            "seeds": list(self.seeds),
            "passCount": self.pass_count,
            "failCount": self.fail_count,
            "seedPassRate": self.seed_pass_rate,
            "medianCellPassRate": self.median_cell_pass_rate,
            "medianRobustScore": self.median_robust_score,
            "medianTopDecileExpectancy": self.median_top_decile_expectancy,
            "medianFoldStabilityPenalty": self.median_fold_stability_penalty,
            "medianDDBreachRate": self.median_dd_breach_rate,
            "medianStageCSurvivors": self.median_stage_c_survivors,
            "topFailReason": self.top_fail_reason,
            "topRejectReason": self.top_reject_reason,
            "failReasonCounts": sorted_counts(self.fail_reason_counts),
            "rejectReasonCounts": sorted_counts(self.reject_reason_counts),
            "rejectReasonCountsByStage": dict(self.reject_reason_counts_by_stage),
            "perSeed": [row.to_dict() for row in self.per_seed],
        }


@dataclass
class AuditSummary:
    """Cells plus cross-cell reason histograms."""

    cells: List[CellSummary]
    global_fail_decision_reason_counts: Dict[str, float] = field(default_factory=dict)
    global_reject_reason_counts: Dict[str, float] = field(default_factory=dict)
    global_reject_reason_counts_by_stage: Dict[str, float] = field(default_factory=empty_stage_counts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cells": [cell.to_dict() for cell in self.cells],
            "globalFailDecisionReasonCounts": sorted_counts(self.global_fail_decision_reason_counts),
            "globalRejectReasonCounts": sorted_counts(self.global_reject_reason_counts),
            "globalRejectReasonCountsByStage": dict(self.global_reject_reason_counts_by_stage),
        }


def summarize_cell(records: Sequence[AuditRecord]) -> CellSummary:
    """Summarize the records of a single cell (all share strategyKey and timeframe)."""
    rows = sorted(records, key=_row_sort_key)
    passes = [r for r in rows if r.decision == "PASS"]
    fails = [r for r in rows if r.decision == "FAIL"]

    fail_reason_counts: Dict[str, float] = {}
    for row in fails:
        fail_reason_counts[row.decision_reason] = fail_reason_counts.get(row.decision_reason, 0) + 1

    reject_reason_counts: Dict[str, float] = {}
    by_stage = empty_stage_counts()
    for row in rows:
        _add_counts(reject_reason_counts, row.rejection_reasons)
        _add_stage_counts(by_stage, row.rejection_reasons)

    first = rows[0]
    return CellSummary(
        strategy_key=first.strategy_key,
        strategy_name=first.strategy_name,
        timeframe=first.timeframe,
        runs=len(rows),
        seeds=sorted({r.seed for r in rows if r.seed is not None}),
        pass_count=len(passes),
        fail_count=len(fails),
        seed_pass_rate=len(passes) / len(rows) if rows else 0.0,
        median_cell_pass_rate=median(r.pass_rate for r in rows),
        median_robust_score=median(r.robust_score for r in rows),
        median_top_decile_expectancy=median(r.top_decile_median_oos_expectancy for r in rows),
        median_fold_stability_penalty=median(r.median_fold_stability_penalty for r in rows),
        median_dd_breach_rate=median(r.top_decile_median_dd_breach_rate for r in rows),
        median_stage_c_survivors=median(r.stage_c_survivors for r in rows),
        fail_reason_counts=fail_reason_counts,
        reject_reason_counts=reject_reason_counts,
        reject_reason_counts_by_stage=by_stage,
        per_seed=[SeedSummary.from_record(r) for r in rows],
        symbol=_shared_label([r.symbol for r in rows]),
        trade_filter_mode=_shared_label([r.trade_filter_mode for r in rows]),
        trade_direction=_shared_label([r.trade_direction for r in rows]),
    )


def build_summary(records: Sequence[AuditRecord]) -> AuditSummary:
    """
    Group records into cells and build cell and global statistics.

    Args:
        records: Normalized audit records (any order)

    Returns:
        AuditSummary with cells sorted by strategyKey, then timeframe
    """
    by_cell: Dict[Tuple[str, str], List[AuditRecord]] = {}
    global_fail: Dict[str, float] = {}
    global_reject: Dict[str, float] = {}
    global_by_stage = empty_stage_counts()

    for record in records:
        by_cell.setdefault((record.strategy_key, record.timeframe), []).append(record)
        if record.decision == "FAIL":
            global_fail[record.decision_reason] = global_fail.get(record.decision_reason, 0) + 1
        _add_counts(global_reject, record.rejection_reasons)
        _add_stage_counts(global_by_stage, record.rejection_reasons)

    cells = [summarize_cell(by_cell[key]) for key in sorted(by_cell)]
    logger.debug(f"Summarized {len(records)} audit record(s) into {len(cells)} cell(s)")

    return AuditSummary(
        cells=cells,
        global_fail_decision_reason_counts=global_fail,
        global_reject_reason_counts=global_reject,
        global_reject_reason_counts_by_stage=global_by_stage,
    )


@dataclass
class AuditAggregation:
    """Summary with its provenance, as rendered by the summary command."""

    input_files: List[str]
    record_count: int
    warnings: AuditWarnings
    summary: AuditSummary

    @property
    def cell_count(self) -> int:
        return len(self.summary.cells)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputFiles": list(self.input_files),
            "recordCount": self.record_count,
            "cellCount": self.cell_count,
            "warnings": self.warnings.to_dict(),
            "summary": self.summary.to_dict(),
        }


def aggregate_files(files: Sequence[Union[str, Path]]) -> AuditAggregation:
    """
    Collect, normalize and summarize audit records from files.

    Raises:
        NoAuditRecordsError: No file contained a recognizable record
    """
    collected = collect_records(files)
    if not collected.records:
        raise NoAuditRecordsError("No robust_random_wf audit records found in input files.")

    for message in collected.warnings.messages():
        logger.warning(message)

    aggregation = AuditAggregation(
        input_files=collected.input_files,
        record_count=len(collected.records),
        warnings=collected.warnings,
        summary=build_summary(collected.records),
    )
    logger.info(
        f"Aggregated {aggregation.record_count} record(s) from {len(files)} file(s) "
        f"into {aggregation.cell_count} cell(s)"
    )
    return aggregation
