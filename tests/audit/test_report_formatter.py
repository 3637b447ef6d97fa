"""
Unit Tests for the Report Formatter

Test Coverage:
  - Summary pipe table (cell rows, reason tables, stage volume)
  - Go/no-go table (verdict header, policy line, reason counts)
  - JSON renderings and repeatability
  - Format validation

Usage:
    pytest tests/audit/test_report_formatter.py -v
"""

import json

import pytest

from robust_validation.audit import (
    GoNoGoPolicy,
    aggregate_files,
    build_report,
    format_go_no_go_table,
    format_summary_table,
    normalize_format,
    render_go_no_go,
    render_summary,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def aggregation(run_file):
    """Aggregation of the matrix run file."""
    return aggregate_files([run_file])


# ============================================================================
# Tables
# ============================================================================

class TestSummaryTable:
    """Test the summary table."""

    def test_header_and_rows(self, aggregation):
        lines = format_summary_table(aggregation.summary).splitlines()

        assert lines[0] == (
            "Cell | Runs | Pass | SeedPassRate | MedianPassRate | MedianRobust | "
            "MedianStageC | MedianDDBreach | TopFailReason | TopRejectReason"
        )
        assert lines[1] == "---|---:|---:|---:|---:|---:|---:|---:|---|---"
        assert lines[2] == (
            "SOLUSDT:1h:rsi_reversion:none:long | 3 | 2/3 | 66.7% | 2.00% | 1.00 | 2.0 | 15.00% | "
            "no_stage_c_survivors | stage_a_min_trades"
        )
        assert lines[3] == (
            "4h:sma_crossover | 1 | 0/1 | 0.0% | 0.00% | 0.00 | 0.0 | 0.00% | "
            "no_stage_a_survivors | stage_a_min_trades"
        )

    def test_global_sections(self, aggregation):
        text = format_summary_table(aggregation.summary)
        assert "Global FAIL Decision Reasons\nReason | Count\n---|---:\nno_stage_a_survivors | 1\n" in text
        assert "Global Stage Reject Reasons\nReason | Count\n---|---:\nstage_a_min_trades | 33\n" in text
        assert text.endswith("Stage | Rejects\n---|---:\nA | 33\nB | 4\nC | 5\nother | 1\n")


class TestGoNoGoTable:
    """Test the go/no-go table."""

    def test_header(self, aggregation):
        report = build_report(aggregation.summary, GoNoGoPolicy())
        lines = format_go_no_go_table(aggregation.summary, report).splitlines()

        assert lines[0] == "Overall Verdict: NO_GO"
        assert lines[1] == (
            "Policy | minSeedRuns=5 | minSeedPasses=3 | minPassRate=1.00% | minStageC=2.0 | "
            "maxDDBreach=20.00% | maxFoldVar=1.80"
        )
        assert lines[2] == ""
        assert lines[5].startswith("SOLUSDT:1h:rsi_reversion:none:long | NO_GO | 2/3 | 3 | 2.00% | 2.0 | 15.00% | 1.500 |")
        assert lines[5].endswith("| insufficient_seed_runs,low_seed_pass_count")

    def test_reason_counts(self, aggregation):
        report = build_report(aggregation.summary, GoNoGoPolicy())
        text = format_go_no_go_table(aggregation.summary, report)
        assert "insufficient_seed_runs (Not enough seeded runs) | 2" in text

    def test_no_reasons(self, aggregation):
        policy = GoNoGoPolicy(min_seed_runs=1, min_seed_passes=0, min_median_cell_pass_rate=0,
                              min_median_stage_c_survivors=0, max_median_dd_breach_rate=1,
                              max_median_fold_stability_penalty=10)
        report = build_report(aggregation.summary, policy)
        text = format_go_no_go_table(aggregation.summary, report)
        assert text.startswith("Overall Verdict: GO\n")
        assert "Reason | Cells\n---|---:\n(none) | 0\n" in text


# ============================================================================
# Rendering
# ============================================================================

class TestRender:
    """Test table/JSON rendering."""

    def test_summary_json(self, aggregation):
        payload = json.loads(render_summary(aggregation, "json"))
        assert payload["recordCount"] == 4
        assert payload["cellCount"] == 2
        assert payload["warnings"] == {"missingSeed": False, "topResultsInference": False}
        assert "generatedAt" not in payload

    def test_go_no_go_json(self, aggregation):
        report = build_report(aggregation.summary, GoNoGoPolicy())
        payload = json.loads(render_go_no_go(aggregation, report, "JSON"))
        assert payload["report"]["overallVerdict"] == "NO_GO"
        assert payload["summary"]["cells"][0]["strategyKey"] == "rsi_reversion"

    def test_rendering_is_repeatable(self, run_file):
        first = render_summary(aggregate_files([run_file]), "table")
        second = render_summary(aggregate_files([run_file]), "table")
        assert first == second

    @pytest.mark.parametrize("value,expected", [(None, "table"), (" Table ", "table"), ("json", "json")])
    def test_normalize_format(self, value, expected):
        assert normalize_format(value) == expected

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid --format: csv"):
            normalize_format("csv")
