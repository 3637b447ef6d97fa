"""
Unit Tests for the Go/No-Go Policy

Test Coverage:
  - Policy validation
  - Ratio/percent flag parsing
  - Per-cell reasons in check order
  - Overall verdict and top GO cell ranking

Usage:
    pytest tests/audit/test_go_no_go.py -v
"""

import pytest

from robust_validation.audit import (
    GoNoGoPolicy,
    build_report,
    build_summary,
    evaluate_cell,
    parse_non_negative_int,
    parse_non_negative_number,
    parse_ratio,
)
from robust_validation.audit.audit_sources import AuditWarnings, format_audit_line, read_records
from robust_validation.exceptions import PolicyError
from tests.conftest import make_audit


# ============================================================================
# Fixtures
# ============================================================================

def summarize(audits):
    text = "\n".join(format_audit_line(a) for a in audits)
    return build_summary(read_records(text, "/runs/x.txt", AuditWarnings()))


@pytest.fixture
def summary(matrix_audits):
    return summarize(matrix_audits)


@pytest.fixture
def lenient_policy():
    """Policy the rsi_reversion/1h matrix cell satisfies."""
    return GoNoGoPolicy(min_seed_runs=3, min_seed_passes=2)


# ============================================================================
# Policy
# ============================================================================

class TestPolicy:
    """Test policy validation."""

    def test_defaults(self):
        assert GoNoGoPolicy().to_dict() == {
            "minSeedRuns": 5,
            "minSeedPasses": 3,
            "minMedianCellPassRate": 0.01,
            "minMedianStageCSurvivors": 2.0,
            "maxMedianDDBreachRate": 0.20,
            "maxMedianFoldStabilityPenalty": 1.8,
        }

    def test_passes_cannot_exceed_runs(self):
        with pytest.raises(PolicyError, match="min seed passes cannot exceed min seed runs"):
            GoNoGoPolicy(min_seed_runs=3, min_seed_passes=4)

    def test_policy_error_is_value_error(self):
        with pytest.raises(ValueError):
            GoNoGoPolicy(max_median_dd_breach_rate=1.5)

    def test_negative_rejected(self):
        with pytest.raises(PolicyError):
            GoNoGoPolicy(min_median_stage_c_survivors=-1)


class TestFlagParsing:
    """Test flag value parsing."""

    @pytest.mark.parametrize("raw,expected", [
        ("0.2", 0.2),
        ("20", 0.2),
        ("1", 1.0),
        ("0", 0.0),
        (25, 0.25),
    ])
    def test_parse_ratio(self, raw, expected):
        assert parse_ratio(raw, "--max-dd-breach") == pytest.approx(expected)

    def test_parse_ratio_invalid(self):
        with pytest.raises(ValueError, match="Invalid --max-dd-breach: abc"):
            parse_ratio("abc", "--max-dd-breach")

    @pytest.mark.parametrize("raw", ["150", "-0.1"])
    def test_parse_ratio_out_of_range(self, raw):
        with pytest.raises(ValueError, match=f"Out of range --min-pass-rate: {raw}"):
            parse_ratio(raw, "--min-pass-rate")

    def test_non_negative_numbers(self):
        assert parse_non_negative_number("1.8", "--max-fold-variance") == 1.8
        assert parse_non_negative_int("4.9", "--min-seed-passes") == 4
        with pytest.raises(ValueError, match="Invalid --min-seed-runs: -1"):
            parse_non_negative_int("-1", "--min-seed-runs")


# ============================================================================
# Evaluation
# ============================================================================

class TestEvaluateCell:
    """Test per-cell verdicts."""

    def test_default_policy_reasons(self, summary):
        verdict = evaluate_cell(summary.cells[0], GoNoGoPolicy())
        assert verdict.verdict == "NO_GO"
        assert verdict.no_go_reasons == ["insufficient_seed_runs", "low_seed_pass_count"]
        assert verdict.no_go_reason_labels == ["Not enough seeded runs", "Seed pass rule failed"]

    def test_lenient_policy_go(self, summary, lenient_policy):
        assert evaluate_cell(summary.cells[0], lenient_policy).verdict == "GO"

    def test_every_reason_in_order(self, summary):
        verdict = evaluate_cell(summary.cells[1], GoNoGoPolicy(
            min_median_cell_pass_rate=0.01, max_median_dd_breach_rate=0.0, max_median_fold_stability_penalty=0.0,
        ))
        # 4h cell: 1 FAIL run, zero medians
        assert verdict.no_go_reasons == [
            "insufficient_seed_runs",
            "low_seed_pass_count",
            "low_median_stage_c_survivors",
            "low_median_stage_c_pass_rate",
        ]

    def test_upper_bounds(self):
        cell = summarize([
            make_audit(seed=s, stageCSurvivors=5, passRate=0.1, topDecileMedianDDBreachRate=0.5,
                       medianFoldStabilityPenalty=3.0)
            for s in range(1, 6)
        ]).cells[0]
        verdict = evaluate_cell(cell, GoNoGoPolicy())
        assert verdict.no_go_reasons == ["high_median_dd_breach_rate", "high_median_fold_variance"]


class TestReport:
    """Test the go/no-go report."""

    def test_overall_no_go(self, summary):
        report = build_report(summary, GoNoGoPolicy())
        assert report.overall_verdict == "NO_GO"
        assert report.go_cell_count == 0
        assert report.no_go_cell_count == 2
        assert report.no_go_reason_counts["insufficient_seed_runs"] == 2
        assert report.top_go_cells == []

    def test_overall_go_with_one_cell(self, summary, lenient_policy):
        report = build_report(summary, lenient_policy)
        assert report.overall_verdict == "GO"
        assert report.go_cell_count == 1
        payload = report.to_dict()
        assert payload["topGoCells"][0]["strategyKey"] == "rsi_reversion"
        assert payload["cells"][1]["verdict"] == "NO_GO"
        assert payload["policy"]["minSeedRuns"] == 3

    def test_top_go_ranking(self):
        audits = [make_audit(strategy_key="a_strategy", seed=s, stageCSurvivors=3, passRate=0.1) for s in (1, 2)]
        audits += [make_audit(strategy_key="b_strategy", seed=s, stageCSurvivors=3, passRate=0.1) for s in (1, 2, 3)]
        report = build_report(summarize(audits), GoNoGoPolicy(min_seed_runs=2, min_seed_passes=2))
        assert [v.cell.strategy_key for v in report.top_go_cells] == ["b_strategy", "a_strategy"]
