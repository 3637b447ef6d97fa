"""
Unit Tests for the Audit Aggregator

Test Coverage:
  - Stage bucketing of reject reasons
  - Per-cell counts, medians and reason histograms
  - Cell ordering and labels (mixed labels collapse to '*')
  - Global histograms
  - Empty inputs

Usage:
    pytest tests/audit/test_audit_aggregator.py -v
"""

import pytest

from robust_validation.audit import (
    aggregate_files,
    build_summary,
    reject_reason_stage,
    top_reason,
)
from robust_validation.audit.audit_sources import AuditWarnings, format_audit_line, read_records
from robust_validation.exceptions import NoAuditRecordsError
from tests.conftest import make_audit


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def records(matrix_audits):
    """Normalized records of the matrix audits."""
    text = "\n".join(format_audit_line(a) for a in matrix_audits)
    return read_records(text, "/runs/run-seed-all.txt", AuditWarnings())


@pytest.fixture
def summary(records):
    return build_summary(records)


# ============================================================================
# Helpers
# ============================================================================

class TestReasonHelpers:
    """Test reason helpers."""

    @pytest.mark.parametrize("reason,stage", [
        ("stage_a_min_trades", "A"),
        ("stage_b_negative_expectancy", "B"),
        ("STAGE_C_dd_breach", "C"),
        ("stage_d_unknown", "other"),
        ("custom_reject", "other"),
    ])
    def test_reject_reason_stage(self, reason, stage):
        assert reject_reason_stage(reason) == stage

    def test_top_reason_tie_breaks_by_name(self):
        assert top_reason({"b": 3, "a": 3, "c": 1}) == "a"
        assert top_reason({}) == ""


# ============================================================================
# Summary
# ============================================================================

class TestBuildSummary:
    """Test per-cell statistics."""

    def test_cells_sorted_by_key(self, summary):
        assert [(c.strategy_key, c.timeframe) for c in summary.cells] == [
            ("rsi_reversion", "1h"),
            ("sma_crossover", "4h"),
        ]

    def test_counts_and_medians(self, summary):
        cell = summary.cells[0]
        assert cell.runs == 3
        assert cell.seeds == [1, 2, 3]
        assert cell.pass_count == 2
        assert cell.fail_count == 1
        assert cell.seed_pass_rate == pytest.approx(2 / 3)
        assert cell.median_cell_pass_rate == pytest.approx(0.02)
        assert cell.median_stage_c_survivors == 2
        assert cell.median_dd_breach_rate == pytest.approx(0.15)
        assert cell.median_fold_stability_penalty == pytest.approx(1.5)
        assert cell.median_robust_score == pytest.approx(1.0)
        assert cell.median_top_decile_expectancy == pytest.approx(0.3)

    def test_reason_histograms(self, summary):
        cell = summary.cells[0]
        assert cell.fail_reason_counts == {"no_stage_c_survivors": 1}
        assert cell.reject_reason_counts == {
            "stage_a_min_trades": 13,
            "stage_b_negative_expectancy": 4,
            "stage_c_dd_breach": 5,
        }
        assert cell.reject_reason_counts_by_stage == {"A": 13, "B": 4, "C": 5, "other": 0}
        assert cell.top_fail_reason == "no_stage_c_survivors"
        assert cell.top_reject_reason == "stage_a_min_trades"

    def test_labels(self, summary):
        assert summary.cells[0].label == "SOLUSDT:1h:rsi_reversion:none:long"
        assert summary.cells[1].label == "4h:sma_crossover"

    def test_mixed_labels(self):
        audits = [
            make_audit(seed=1, symbol="SOLUSDT", tradeDirection="long"),
            make_audit(seed=2, symbol="SOLUSDT", tradeDirection="short"),
        ]
        text = "\n".join(format_audit_line(a) for a in audits)
        cell = build_summary(read_records(text, "/x", AuditWarnings())).cells[0]
        assert cell.trade_direction == "*"
        assert cell.label == "SOLUSDT:1h:rsi_reversion:*"

    def test_per_seed_rows_ordered(self, summary):
        assert [row.seed for row in summary.cells[0].per_seed] == [1, 2, 3]
        assert summary.cells[0].per_seed[1].decision == "FAIL"

    def test_global_histograms(self, summary):
        payload = summary.to_dict()
        assert payload["globalFailDecisionReasonCounts"] == {
            "no_stage_a_survivors": 1,
            "no_stage_c_survivors": 1,
        }
        assert list(payload["globalRejectReasonCounts"]) == [
            "stage_a_min_trades",
            "stage_c_dd_breach",
            "stage_b_negative_expectancy",
            "custom_reject",
        ]
        assert payload["globalRejectReasonCountsByStage"] == {"A": 33, "B": 4, "C": 5, "other": 1}

    def test_cell_payload_keys(self, summary):
        payload = summary.cells[0].to_dict()
        for key in ("strategyKey", "seedPassRate", "medianCellPassRate", "medianDDBreachRate",
                    "topFailReason", "rejectReasonCountsByStage", "perSeed"):
            assert key in payload


# ============================================================================
# Files
# ============================================================================

class TestAggregateFiles:
    """Test file aggregation."""

    def test_aggregate(self, run_file):
        aggregation = aggregate_files([run_file])
        assert aggregation.record_count == 4
        assert aggregation.cell_count == 2
        assert aggregation.to_dict()["inputFiles"] == [str(run_file.resolve())]

    def test_order_independent(self, tmp_path, matrix_audits):
        forward = tmp_path / "forward.txt"
        backward = tmp_path / "backward.txt"
        forward.write_text("\n".join(format_audit_line(a) for a in matrix_audits))
        backward.write_text("\n".join(format_audit_line(a) for a in reversed(matrix_audits)))

        a = aggregate_files([forward]).summary.to_dict()
        b = aggregate_files([backward]).summary.to_dict()
        assert a == b

    def test_no_records(self, tmp_path):
        empty = tmp_path / "empty.txt"
        empty.write_text("nothing to see\n")
        with pytest.raises(NoAuditRecordsError, match="No robust_random_wf audit records found"):
            aggregate_files([empty])
