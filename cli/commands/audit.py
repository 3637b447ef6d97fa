"""
Audit Commands - Matrix summary and go/no-go report

- summary: Aggregate run files into per-cell statistics
- go-no-go: Apply a go/no-go policy to the aggregated cells

Both commands accept run files, debug-log exports and top-results exports
in any mix, and render either a pipe table or a JSON document.
"""

import argparse
from pathlib import Path
from typing import Optional

from cli.utils.output_formatter import OutputFormatter, print_success, print_warning
from robust_validation.artifacts import write_text_atomic
from robust_validation.audit import (
    AuditAggregation,
    GoNoGoPolicy,
    aggregate_files,
    build_report,
    normalize_format,
    parse_non_negative_int,
    parse_non_negative_number,
    parse_ratio,
    render_go_no_go,
    render_summary,
)

TOP_RESULTS_WARNING = (
    "Warning: some records inferred from 'Copy Top Results' (PASS-only). "
    "Include cell_audit logs for FAIL coverage."
)
MISSING_SEED_WARNING = "Warning: some records are missing seed values."


def _add_common(parser: argparse.ArgumentParser):
    parser.add_argument('files', nargs='+', help='Run files, debug exports or top-results exports')
    parser.add_argument('--format', type=str, default='table', help='Output format: table or json (default: table)')
    parser.add_argument('--out', type=str, help='Write output to file instead of stdout')


def add_summary_parser(subparsers) -> argparse.ArgumentParser:
    parser = subparsers.add_parser('summary', help='Summarize seed-run audit records per cell')
    _add_common(parser)
    return parser


def add_go_no_go_parser(subparsers) -> argparse.ArgumentParser:
    parser = subparsers.add_parser('go-no-go', help='Go/no-go verdicts over audit summary cells')
    _add_common(parser)
    parser.add_argument('--min-seed-runs', type=str, help='Minimum run count per cell (default: 5)')
    parser.add_argument('--min-seed-passes', type=str, help='Minimum PASS count per cell (default: 3)')
    parser.add_argument('--min-pass-rate', type=str, help='Minimum median Stage-C pass rate, ratio or percent (default: 0.01)')
    parser.add_argument('--min-stage-c-survivors', type=str, help='Minimum median Stage-C survivors (default: 2)')
    parser.add_argument('--max-dd-breach', type=str, help='Max median DD breach rate, ratio or percent (default: 0.20)')
    parser.add_argument('--max-fold-variance', type=str, help='Max median fold stability penalty (default: 1.8)')
    return parser


def policy_from_args(args: argparse.Namespace) -> GoNoGoPolicy:
    """
    Build a policy from the flags that were given; the rest keep defaults.

    Raises:
        ValueError: A flag value is not a valid number or ratio
        PolicyError: min seed passes exceeds min seed runs
    """
    values = {}
    if args.min_seed_runs is not None:
        values['min_seed_runs'] = parse_non_negative_int(args.min_seed_runs, '--min-seed-runs')
    if args.min_seed_passes is not None:
        values['min_seed_passes'] = parse_non_negative_int(args.min_seed_passes, '--min-seed-passes')
    if args.min_pass_rate is not None:
        values['min_median_cell_pass_rate'] = parse_ratio(args.min_pass_rate, '--min-pass-rate')
    if args.min_stage_c_survivors is not None:
        values['min_median_stage_c_survivors'] = parse_non_negative_number(
            args.min_stage_c_survivors, '--min-stage-c-survivors'
        )
    if args.max_dd_breach is not None:
        values['max_median_dd_breach_rate'] = parse_ratio(args.max_dd_breach, '--max-dd-breach')
    if args.max_fold_variance is not None:
        values['max_median_fold_stability_penalty'] = parse_non_negative_number(
            args.max_fold_variance, '--max-fold-variance'
        )
    return GoNoGoPolicy(**values)


def _emit(rendered: str, out: Optional[str], label: str, formatter: OutputFormatter):
    if out:
        path = write_text_atomic(Path(out).resolve(), rendered)
        print_success(f"Wrote {label}: {path}")
    else:
        formatter.print_rendered(rendered)


def _warn(aggregation: AuditAggregation):
    if aggregation.warnings.top_results_inference:
        print_warning(TOP_RESULTS_WARNING)
    if aggregation.warnings.missing_seed:
        print_warning(MISSING_SEED_WARNING)


def run_summary(args: argparse.Namespace, formatter: Optional[OutputFormatter] = None):
    """Aggregate the input files and render the matrix summary."""
    formatter = formatter or OutputFormatter()
    output_format = normalize_format(args.format)
    aggregation = aggregate_files(args.files)
    _emit(render_summary(aggregation, output_format), args.out, "summary", formatter)
    _warn(aggregation)


def run_go_no_go(args: argparse.Namespace, formatter: Optional[OutputFormatter] = None):
    """Aggregate the input files and render the go/no-go report."""
    formatter = formatter or OutputFormatter()
    output_format = normalize_format(args.format)
    policy = policy_from_args(args)
    aggregation = aggregate_files(args.files)
    report = build_report(aggregation.summary, policy)
    _emit(render_go_no_go(aggregation, report, output_format), args.out, "report", formatter)
    _warn(aggregation)
