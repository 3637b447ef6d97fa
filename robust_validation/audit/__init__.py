"""
Audit Aggregation Module

Turns seed-run audit logs into per-cell summaries and go/no-go verdicts.

Key Components:
- collect_records: Parse run files, debug exports and top-results exports
- build_summary / aggregate_files: Per (strategy, timeframe) cell statistics
- GoNoGoPolicy / build_report: Policy gate over summary cells
- render_summary / render_go_no_go: Table and JSON renderings

Usage:
    from robust_validation.audit import GoNoGoPolicy, aggregate_files, build_report, render_go_no_go

    aggregation = aggregate_files(run_files)
    report = build_report(aggregation.summary, GoNoGoPolicy())
    print(render_go_no_go(aggregation, report))
"""

from .audit_sources import (
    AUDIT_MODE,
    CELL_AUDIT_MARKER,
    AuditRecord,
    AuditWarnings,
    CollectedRecords,
    classify_json_document,
    classify_text,
    collect_records,
    format_audit_line,
    read_records,
)
from .audit_aggregator import (
    AuditAggregation,
    AuditSummary,
    CellSummary,
    aggregate_files,
    build_summary,
    reject_reason_stage,
    top_reason,
)
from .go_no_go import (
    NOGO_REASON_LABELS,
    CellVerdict,
    GoNoGoPolicy,
    GoNoGoReport,
    build_report,
    evaluate_cell,
    parse_non_negative_int,
    parse_non_negative_number,
    parse_ratio,
)
from .report_formatter import (
    format_go_no_go_table,
    format_summary_table,
    normalize_format,
    render_go_no_go,
    render_summary,
)

__all__ = [
    'AUDIT_MODE',
    'CELL_AUDIT_MARKER',
    'AuditRecord',
    'AuditWarnings',
    'CollectedRecords',
    'classify_json_document',
    'classify_text',
    'collect_records',
    'format_audit_line',
    'read_records',
    'AuditAggregation',
    'AuditSummary',
    'CellSummary',
    'aggregate_files',
    'build_summary',
    'reject_reason_stage',
    'top_reason',
    'NOGO_REASON_LABELS',
    'CellVerdict',
    'GoNoGoPolicy',
    'GoNoGoReport',
    'build_report',
    'evaluate_cell',
    'parse_non_negative_int',
    'parse_non_negative_number',
    'parse_ratio',
    'format_go_no_go_table',
    'format_summary_table',
    'normalize_format',
    'render_go_no_go',
    'render_summary',
]
