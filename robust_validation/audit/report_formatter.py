"""
Report Formatter - Table and JSON renderings of audit summaries

Both renderings read the same AuditAggregation / GoNoGoReport objects. The
table format is a pipe-separated Markdown table so it pastes cleanly into
notes and PR descriptions; the JSON format is the aggregation payload.

Neither rendering includes a timestamp, so rendering the same inputs twice
is byte-identical.
"""

from typing import Any, Dict, List, Optional, Sequence

from robust_validation.artifacts import to_json_text
from robust_validation.audit.audit_aggregator import STAGES, AuditAggregation, AuditSummary
from robust_validation.audit.go_no_go import NOGO_REASON_LABELS, GoNoGoReport

FORMATS = ("table", "json")

SUMMARY_HEADERS = [
    "Cell", "Runs", "Pass", "SeedPassRate", "MedianPassRate", "MedianRobust",
    "MedianStageC", "MedianDDBreach", "TopFailReason", "TopRejectReason",
]
SUMMARY_ALIGN = ["---", "---:", "---:", "---:", "---:", "---:", "---:", "---:", "---", "---"]

GO_NO_GO_HEADERS = [
    "Cell", "Verdict", "SeedPass", "Runs", "MedianPassRate", "MedianStageC",
    "MedianDDBreach", "MedianFoldVar", "TopFailReason", "NoGoReasons",
]
GO_NO_GO_ALIGN = ["---", "---", "---:", "---:", "---:", "---:", "---:", "---:", "---", "---"]


def normalize_format(value: Optional[str]) -> str:
    """
    Lower-case and validate an output format name.

    Raises:
        ValueError: Format is not 'table' or 'json'
    """
    fmt = str(value or "table").strip().lower()
    if fmt not in FORMATS:
        raise ValueError(f"Invalid --format: {fmt}")
    return fmt


def _row(values: Sequence[Any]) -> str:
    return " | ".join(str(v) for v in values)


def _percent(ratio: float, digits: int) -> str:
    return f"{ratio * 100:.{digits}f}%"


def _reason_table(lines: List[str], heading: str, counts: Dict[str, Any]) -> None:
    lines.append("")
    lines.append(heading)
    lines.append("Reason | Count")
    lines.append("---|---:")
    if not counts:
        lines.append("(none) | 0")
        return
    for reason, count in counts.items():
        lines.append(f"{reason} | {count}")


def format_summary_table(summary: AuditSummary) -> str:
    """Cell table followed by the global reason and stage volume tables."""
    payload = summary.to_dict()
    lines = [_row(SUMMARY_HEADERS), "|".join(SUMMARY_ALIGN)]
    for cell in summary.cells:
        lines.append(_row([
            cell.label,
            cell.runs,
            f"{cell.pass_count}/{cell.runs}",
            _percent(cell.seed_pass_rate, 1),
            _percent(cell.median_cell_pass_rate, 2),
            f"{cell.median_robust_score:.2f}",
            f"{cell.median_stage_c_survivors:.1f}",
            _percent(cell.median_dd_breach_rate, 2),
            cell.top_fail_reason or "-",
            cell.top_reject_reason or "-",
        ]))

    _reason_table(lines, "Global FAIL Decision Reasons", payload["globalFailDecisionReasonCounts"])
    _reason_table(lines, "Global Stage Reject Reasons", payload["globalRejectReasonCounts"])

    lines.append("")
    lines.append("Global Reject Volume by Stage")
    lines.append("Stage | Rejects")
    lines.append("---|---:")
    for stage in STAGES:
        lines.append(f"{stage} | {payload['globalRejectReasonCountsByStage'][stage]}")

    return "\n".join(lines) + "\n"


def format_policy_line(report: GoNoGoReport) -> str:
    policy = report.policy
    return _row([
        "Policy",
        f"minSeedRuns={policy.min_seed_runs}",
        f"minSeedPasses={policy.min_seed_passes}",
        f"minPassRate={_percent(policy.min_median_cell_pass_rate, 2)}",
        f"minStageC={policy.min_median_stage_c_survivors:.1f}",
        f"maxDDBreach={_percent(policy.max_median_dd_breach_rate, 2)}",
        f"maxFoldVar={policy.max_median_fold_stability_penalty:.2f}",
    ])


def format_go_no_go_table(summary: AuditSummary, report: GoNoGoReport) -> str:
    """Verdict header, per-cell verdict table and reason tables."""
    payload = summary.to_dict()
    lines = [
        f"Overall Verdict: {report.overall_verdict}",
        format_policy_line(report),
        "",
        _row(GO_NO_GO_HEADERS),
        "|".join(GO_NO_GO_ALIGN),
    ]
    for verdict in report.cells:
        cell = verdict.cell
        lines.append(_row([
            cell.label,
            verdict.verdict,
            f"{cell.pass_count}/{cell.runs}",
            cell.runs,
            _percent(cell.median_cell_pass_rate, 2),
            f"{cell.median_stage_c_survivors:.1f}",
            _percent(cell.median_dd_breach_rate, 2),
            f"{cell.median_fold_stability_penalty:.3f}",
            cell.top_fail_reason or "-",
            ",".join(verdict.no_go_reasons) or "-",
        ]))

    lines.append("")
    lines.append("No-Go Reason Counts")
    lines.append("Reason | Cells")
    lines.append("---|---:")
    no_go_counts = report.no_go_reason_counts
    if not no_go_counts:
        lines.append("(none) | 0")
    for reason, count in no_go_counts.items():
        lines.append(f"{reason} ({NOGO_REASON_LABELS.get(reason, reason)}) | {count}")

    _reason_table(lines, "Global FAIL Decision Reasons", payload["globalFailDecisionReasonCounts"])
    _reason_table(lines, "Global Stage Reject Reasons", payload["globalRejectReasonCounts"])

    return "\n".join(lines) + "\n"


def go_no_go_payload(aggregation: AuditAggregation, report: GoNoGoReport) -> Dict[str, Any]:
    payload = aggregation.to_dict()
    payload["report"] = report.to_dict()
    return payload


def render_summary(aggregation: AuditAggregation, output_format: str = "table") -> str:
    """Render a matrix summary as a table or JSON document."""
    if normalize_format(output_format) == "json":
        return to_json_text(aggregation.to_dict())
    return format_summary_table(aggregation.summary)


def render_go_no_go(aggregation: AuditAggregation, report: GoNoGoReport, output_format: str = "table") -> str:
    """Render a go/no-go report as a table or JSON document."""
    if normalize_format(output_format) == "json":
        return to_json_text(go_no_go_payload(aggregation, report))
    return format_go_no_go_table(aggregation.summary, report)
