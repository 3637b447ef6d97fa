"""
Audit Sources - Parse heterogeneous audit inputs into AuditRecords

Seed-run audit data reaches the aggregator in several shapes. Each shape is
classified into one payload variant, and every variant has its own adapter
that produces the canonical AuditRecord.

Payload variants (source tag):
    - DebugEntryPayload    debug_entries_json / debug_entry_json
                           {"message": MARKER, "data": {...}}
    - CellAuditPayload     cell_audit_json
                           {"mode": "robust_random_wf", "strategyKey": ...}
    - TopResultPayload     top_results_json
                           {"strategyId": ..., "robustMetrics": {...}}; PASS rows only
    - StructuredPayload    records_json
                           {"records": [...]}
    - TextLinePayload      debug_copy_text
                           free text lines "MARKER {json}"

Records from the top-results variant carry no decision: they are inferred
as PASS with decisionReason 'inferred_from_top_results' and a global
warning flag is raised, since failed cells never appear in that source.

Usage:
    from robust_validation.audit.audit_sources import collect_records

    collected = collect_records(["runs/run-seed-1337.txt", "runs/top.json"])
    print(len(collected.records), collected.warnings.to_dict())
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from loguru import logger

from robust_validation.statistics import as_finite_number

AUDIT_MODE = "robust_random_wf"
CELL_AUDIT_MARKER = "[Finder][robust_random_wf][cell_audit]"
INFERRED_DECISION_REASON = "inferred_from_top_results"


@dataclass
class AuditWarnings:
    """Global flags raised while normalizing records."""

    missing_seed: bool = False
    top_results_inference: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "missingSeed": self.missing_seed,
            "topResultsInference": self.top_results_inference,
        }

    def messages(self) -> List[str]:
        messages = []
        if self.top_results_inference:
            messages.append(
                "Some records were inferred from top-results exports (PASS rows only). "
                "Include cell_audit logs for FAIL coverage."
            )
        if self.missing_seed:
            messages.append("Some records are missing seed values.")
        return messages


@dataclass(frozen=True)
class AuditRecord:
    """
    Normalized per-seed, per-cell audit record.

    Attributes:
        strategy_key: Strategy registry key (cell key part 1)
        timeframe: Interval label (cell key part 2)
        seed: Search seed, None when the source omitted it
        decision: 'PASS' or 'FAIL'
        decision_reason: Search decision reason ('unknown' when absent)
        rejection_reasons: Candidate reject reason -> count
        source: Payload variant tag
        source_file: Absolute path of the input file
    """

    source: str
    source_file: str
    strategy_key: str
    strategy_name: str
    timeframe: str
    seed: Optional[int]
    cell_seed: Optional[int]
    decision: str
    decision_reason: str
    sampled_params: float = 0.0
    stage_a_survivors: float = 0.0
    stage_b_survivors: float = 0.0
    stage_c_survivors: float = 0.0
    pass_rate: float = 0.0
    top_decile_median_oos_expectancy: float = 0.0
    top_decile_median_profitable_fold_ratio: float = 0.0
    median_fold_stability_penalty: float = 0.0
    top_decile_median_dd_breach_rate: float = 0.0
    robust_score: float = 0.0
    rejection_reasons: Dict[str, float] = field(default_factory=dict)
    symbol: Optional[str] = None
    trade_filter_mode: Optional[str] = None
    trade_direction: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "sourceFile": self.source_file,
            "strategyKey": self.strategy_key,
            "strategyName": self.strategy_name,
            "timeframe": self.timeframe,
            "seed": self.seed,
            "cellSeed": self.cell_seed,
            "decision": self.decision,
            "decisionReason": self.decision_reason,
            "sampledParams": self.sampled_params,
            "stageASurvivors": self.stage_a_survivors,
            "stageBSurvivors": self.stage_b_survivors,
            "stageCSurvivors": self.stage_c_survivors,
            "passRate": self.pass_rate,
            "topDecileMedianOOSExpectancy": self.top_decile_median_oos_expectancy,
            "topDecileMedianProfitableFoldRatio": self.top_decile_median_profitable_fold_ratio,
            "medianFoldStabilityPenalty": self.median_fold_stability_penalty,
            "topDecileMedianDDBreachRate": self.top_decile_median_dd_breach_rate,
            "robustScore": self.robust_score,
            "rejectionReasons": dict(self.rejection_reasons),
            "symbol": self.symbol,
            "tradeFilterMode": self.trade_filter_mode,
            "tradeDirection": self.trade_direction,
        }


# ============================================================================
# Payload variants
# ============================================================================

@dataclass(frozen=True)
class DebugEntryPayload:
    """Debug-log entry wrapping a cell audit under 'data'."""

    entry: Dict[str, Any]
    source: str = "debug_entries_json"


@dataclass(frozen=True)
class CellAuditPayload:
    """Bare cell audit object emitted by the finder."""

    audit: Dict[str, Any]
    source: str = "cell_audit_json"


@dataclass(frozen=True)
class TopResultPayload:
    """Top-results export row; metrics live under 'robustMetrics'."""

    row: Dict[str, Any]
    source: str = "top_results_json"


@dataclass(frozen=True)
class StructuredPayload:
    """Already structured record from a {'records': [...]} document."""

    record: Dict[str, Any]
    source: str = "records_json"


@dataclass(frozen=True)
class TextLinePayload:
    """JSON object parsed from a marker line of free text."""

    audit: Dict[str, Any]
    source: str = "debug_copy_text"


AuditPayload = Union[DebugEntryPayload, CellAuditPayload, TopResultPayload, StructuredPayload, TextLinePayload]


# ============================================================================
# Normalization
# ============================================================================

def _optional_int(value: Any) -> Optional[int]:
    number = as_finite_number(value, math.nan)
    if math.isnan(number):
        return None
    return int(number) if float(number).is_integer() else None


def _count(value: float) -> float:
    return int(value) if float(value).is_integer() else value


def normalize_rejection_reasons(raw: Any) -> Dict[str, float]:
    """Keep reasons with a positive finite count."""
    if not isinstance(raw, dict):
        return {}
    normalized = {}
    for reason, raw_count in raw.items():
        count = as_finite_number(raw_count, 0.0)
        if reason and count > 0:
            normalized[str(reason)] = _count(count)
    return normalized


def _optional_label(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def normalize_fields(
    raw: Dict[str, Any],
    metrics: Dict[str, Any],
    source: str,
    source_file: str,
    warnings: AuditWarnings,
) -> Optional[AuditRecord]:
    """
    Build an AuditRecord from identity fields (raw) and metric fields (metrics).

    Returns None when strategyKey or timeframe cannot be determined.
    """
    strategy_key = _text(raw.get("strategyKey") if raw.get("strategyKey") is not None else raw.get("strategyId"))
    strategy_name = _text(raw.get("strategyName") if raw.get("strategyName") is not None else raw.get("name"))

    timeframe = metrics.get("timeframe")
    if timeframe is None:
        timeframes = raw.get("timeframes")
        timeframe = timeframes[0] if isinstance(timeframes, list) and len(timeframes) == 1 else ""
    timeframe = _text(timeframe)

    if not strategy_key or not timeframe:
        return None

    decision = _text(metrics.get("decision")).upper()
    decision_reason = _text(metrics.get("decisionReason"))
    if not decision:
        decision = "PASS"
        decision_reason = decision_reason or INFERRED_DECISION_REASON
        warnings.top_results_inference = True

    seed = _optional_int(metrics.get("seed"))
    if seed is None:
        warnings.missing_seed = True

    rejection_source = metrics.get("rejectionReasons")
    if rejection_source is None:
        rejection_source = raw.get("rejectionReasons")

    return AuditRecord(
        source=source,
        source_file=source_file,
        strategy_key=strategy_key,
        strategy_name=strategy_name or strategy_key,
        timeframe=timeframe,
        seed=seed,
        cell_seed=_optional_int(metrics.get("cellSeed")),
        decision="PASS" if decision == "PASS" else "FAIL",
        decision_reason=decision_reason or "unknown",
        sampled_params=as_finite_number(metrics.get("sampledParams")),
        stage_a_survivors=as_finite_number(metrics.get("stageASurvivors")),
        stage_b_survivors=as_finite_number(metrics.get("stageBSurvivors")),
        stage_c_survivors=as_finite_number(metrics.get("stageCSurvivors")),
        pass_rate=as_finite_number(metrics.get("passRate")),
        top_decile_median_oos_expectancy=as_finite_number(metrics.get("topDecileMedianOOSExpectancy")),
        top_decile_median_profitable_fold_ratio=as_finite_number(metrics.get("topDecileMedianProfitableFoldRatio")),
        median_fold_stability_penalty=as_finite_number(metrics.get("medianFoldStabilityPenalty")),
        top_decile_median_dd_breach_rate=as_finite_number(metrics.get("topDecileMedianDDBreachRate")),
        robust_score=as_finite_number(metrics.get("robustScore")),
        rejection_reasons=normalize_rejection_reasons(rejection_source),
        symbol=_optional_label(raw.get("symbol")),
        trade_filter_mode=_optional_label(raw.get("tradeFilterMode")),
        trade_direction=_optional_label(raw.get("tradeDirection")),
    )


def _metrics_of(obj: Dict[str, Any]) -> Dict[str, Any]:
    nested = obj.get("robustMetrics")
    return nested if isinstance(nested, dict) else obj


def adapt_debug_entry(payload: DebugEntryPayload, source_file: str, warnings: AuditWarnings) -> Optional[AuditRecord]:
    data = payload.entry.get("data")
    if not isinstance(data, dict):
        return None
    return normalize_fields(data, _metrics_of(data), payload.source, source_file, warnings)


def adapt_cell_audit(payload: CellAuditPayload, source_file: str, warnings: AuditWarnings) -> Optional[AuditRecord]:
    return normalize_fields(payload.audit, payload.audit, payload.source, source_file, warnings)


def adapt_top_result(payload: TopResultPayload, source_file: str, warnings: AuditWarnings) -> Optional[AuditRecord]:
    return normalize_fields(payload.row, _metrics_of(payload.row), payload.source, source_file, warnings)


def adapt_structured(payload: StructuredPayload, source_file: str, warnings: AuditWarnings) -> Optional[AuditRecord]:
    return normalize_fields(payload.record, _metrics_of(payload.record), payload.source, source_file, warnings)


def adapt_text_line(payload: TextLinePayload, source_file: str, warnings: AuditWarnings) -> Optional[AuditRecord]:
    return normalize_fields(payload.audit, _metrics_of(payload.audit), payload.source, source_file, warnings)


ADAPTERS = {
    DebugEntryPayload: adapt_debug_entry,
    CellAuditPayload: adapt_cell_audit,
    TopResultPayload: adapt_top_result,
    StructuredPayload: adapt_structured,
    TextLinePayload: adapt_text_line,
}


def adapt_payload(payload: AuditPayload, source_file: str, warnings: AuditWarnings) -> Optional[AuditRecord]:
    """Dispatch a payload to its variant adapter."""
    return ADAPTERS[type(payload)](payload, source_file, warnings)


# ============================================================================
# Classification
# ============================================================================

def _is_debug_entry(obj: Dict[str, Any]) -> bool:
    return obj.get("message") == CELL_AUDIT_MARKER and bool(obj.get("data"))


def _is_cell_audit(obj: Dict[str, Any]) -> bool:
    return obj.get("mode") == AUDIT_MODE and bool(obj.get("strategyKey"))


def classify_json_document(doc: Any) -> List[AuditPayload]:
    """
    Classify a decoded JSON document into payload variants.

    Arrays may mix debug entries, cell audits and top-results rows; objects
    are a single debug entry, a single cell audit, or a records container.
    Anything else yields no payloads.
    """
    payloads: List[AuditPayload] = []
    if isinstance(doc, list):
        for item in doc:
            if not isinstance(item, dict):
                continue
            if _is_debug_entry(item):
                payloads.append(DebugEntryPayload(item))
            elif _is_cell_audit(item):
                payloads.append(CellAuditPayload(item))
            elif item.get("robustMetrics") and item.get("strategyId"):
                payloads.append(TopResultPayload(item))
    elif isinstance(doc, dict):
        if _is_debug_entry(doc):
            payloads.append(DebugEntryPayload(doc, source="debug_entry_json"))
        elif _is_cell_audit(doc):
            payloads.append(CellAuditPayload(doc))
        elif isinstance(doc.get("records"), list):
            payloads.extend(StructuredPayload(item) for item in doc["records"] if isinstance(item, dict))
    return payloads


def classify_text(text: str) -> List[TextLinePayload]:
    """Marker lines whose JSON (from the first '{') parses to an object."""
    payloads = []
    for line in text.splitlines():
        if CELL_AUDIT_MARKER not in line:
            continue
        start = line.find("{")
        if start < 0:
            continue
        try:
            parsed = json.loads(line[start:].strip())
        except json.JSONDecodeError:
            logger.debug(f"Skipping unparsable audit line: {line[:80]}")
            continue
        if isinstance(parsed, dict):
            payloads.append(TextLinePayload(parsed))
    return payloads


def format_audit_line(audit_record: Dict[str, Any]) -> str:
    """Render one audit record as a marker line."""
    return f"{CELL_AUDIT_MARKER} {json.dumps(audit_record, ensure_ascii=False)}"


# ============================================================================
# Collection
# ============================================================================

@dataclass
class CollectedRecords:
    """Records, warnings and resolved input paths from one collection pass."""

    input_files: List[str]
    records: List[AuditRecord]
    warnings: AuditWarnings


def read_records(text: str, source_file: str, warnings: AuditWarnings) -> List[AuditRecord]:
    """Parse one file's contents; JSON documents first, free text otherwise."""
    try:
        doc = json.loads(text)
    except json.JSONDecodeError:
        payloads: Sequence[AuditPayload] = classify_text(text)
    else:
        payloads = classify_json_document(doc)

    records = []
    for payload in payloads:
        record = adapt_payload(payload, source_file, warnings)
        if record is not None:
            records.append(record)
    dropped = len(payloads) - len(records)
    if dropped:
        logger.debug(f"{Path(source_file).name}: dropped {dropped} payload(s) without strategyKey/timeframe")
    return records


def collect_records(files: Sequence[Union[str, Path]]) -> CollectedRecords:
    """
    Read every input file and normalize its audit payloads.

    Raises:
        OSError: An input file cannot be read
    """
    warnings = AuditWarnings()
    records: List[AuditRecord] = []
    input_files: List[str] = []

    for file_path in files:
        resolved = str(Path(file_path).resolve())
        input_files.append(resolved)
        with open(resolved, "r", encoding="utf-8") as f:
            text = f.read()
        file_records = read_records(text, resolved, warnings)
        logger.debug(f"{Path(resolved).name}: {len(file_records)} audit record(s)")
        records.extend(file_records)

    return CollectedRecords(input_files=input_files, records=records, warnings=warnings)
