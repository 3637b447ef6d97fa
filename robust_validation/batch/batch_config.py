"""
Batch Configuration - Load and resolve robust batch run configs

Loads a YAML or JSON batch config and resolves it into the effective task
matrix, seeds, finder settings, trading settings, go/no-go policy and output
options.

Priority order:
1. CLI overrides (highest)
2. Environment variables (ROBUST_OUT_DIR, ROBUST_SEEDS, ROBUST_STRATEGIES;
   a .env file is honored through python-dotenv)
3. Config file
4. Defaults (lowest)

Config shape (YAML shown):
    strategyKeys: [sma_crossover, rsi_reversion]   # or "all"
    seeds: [1337, 7331, 2026, 4242, 9001]
    finder: {rangePercent: 35, maxRuns: 120, steps: 3, topN: 10, minTrades: 40}
    tradeFilterModes: [none]
    tradeDirections: [long, short]
    capital: {initialCapital: 10000, positionSize: 100, commission: 0.1}
    reportPolicy: {minSeedRuns: 5, minSeedPasses: 3}
    output: {outDir: batch-runs, filePrefix: run-seed}
    matrix:
      - {label: sol-1h, dataPath: price-data/SOLUSDT-1h.json}
"""

import json
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml
from dotenv import load_dotenv
from loguru import logger

from robust_validation.audit.go_no_go import GoNoGoPolicy
from robust_validation.backtest_config import (
    VALID_TRADE_DIRECTIONS,
    VALID_TRADE_FILTERS,
    BacktestSettings,
    FinderSettings,
    StrategyParams,
)
from robust_validation.engines.strategies import available_strategy_keys

# Load environment variables
load_dotenv()

DEFAULT_SEEDS = [1337, 7331, 2026, 4242, 9001]
DEFAULT_FILE_PREFIX = "run-seed"
DEFAULT_TRADE_FILTER = "none"
DEFAULT_TRADE_DIRECTION = "short"

ENV_OUT_DIR = "ROBUST_OUT_DIR"
ENV_SEEDS = "ROBUST_SEEDS"
ENV_STRATEGIES = "ROBUST_STRATEGIES"

BACKTEST_SETTING_KEYS = {
    "initialCapital": "initial_capital",
    "positionSizePercent": "position_size_percent",
    "commissionPercent": "commission_percent",
    "slippageBps": "slippage_bps",
    "sizingMode": "sizing_mode",
    "fixedTradeAmount": "fixed_trade_amount",
    "tradeDirection": "trade_direction",
    "tradeFilterMode": "trade_filter_mode",
}

CAPITAL_KEYS = {
    "initialCapital": "initial_capital",
    "positionSize": "position_size_percent",
    "commission": "commission_percent",
    "fixedTradeAmount": "fixed_trade_amount",
}


@dataclass
class CliOverrides:
    """Values given on the command line (or environment) that beat the config file."""

    config_path: Optional[str] = None
    out_dir: Optional[str] = None
    strategy_keys: Optional[List[str]] = None
    seeds: Optional[List[float]] = None
    force: bool = False


@dataclass(frozen=True)
class BatchTask:
    """One expanded (dataset x filter x direction) task."""

    label: str
    data_path: str
    symbol: str
    interval: str
    strategy_keys: List[str]
    trade_filter_mode: str
    trade_direction: str
    strategy_params: Optional[Dict[str, StrategyParams]] = None


@dataclass
class OutputOptions:
    """Output directory, run file prefix and artifact toggles."""

    out_dir: str
    file_prefix: str = DEFAULT_FILE_PREFIX
    write_per_cell_json_summary: bool = True
    write_per_cell_json_report: bool = True
    write_per_cell_table_report: bool = True
    write_batch_json_summary: bool = True
    write_batch_json_report: bool = True
    write_batch_table_report: bool = True

    @property
    def writes_per_cell(self) -> bool:
        return (
            self.write_per_cell_json_summary
            or self.write_per_cell_json_report
            or self.write_per_cell_table_report
        )


@dataclass
class BatchConfig:
    """Effective batch configuration after defaults and overrides."""

    tasks: List[BatchTask]
    seeds: List[int]
    finder: FinderSettings
    settings: BacktestSettings
    policy: GoNoGoPolicy
    output: OutputOptions
    config_path: Optional[str] = None
    force: bool = False


# ============================================================================
# Value parsing
# ============================================================================

def _number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def positive_int(value: Any, fallback: int) -> int:
    """Floor to an int >= 1; non-numeric values use the fallback."""
    parsed = _number(value)
    if not math.isfinite(parsed):
        return fallback
    return max(1, int(math.floor(parsed)))


def non_negative(value: Any, fallback: float) -> float:
    parsed = _number(value)
    if not math.isfinite(parsed):
        return fallback
    return max(0.0, parsed)


def clamped_ratio(value: Any, fallback: float) -> float:
    """Ratio or percent (> 1 is divided by 100), clamped to [0, 1]."""
    parsed = _number(value)
    if not math.isfinite(parsed):
        return fallback
    ratio = parsed / 100 if parsed > 1 else parsed
    return max(0.0, min(1.0, ratio))


def parse_number_list(text: str) -> List[float]:
    """Parse '1337, 7331' into finite numbers, skipping anything else."""
    values = []
    for part in str(text or "").split(","):
        parsed = _number(part.strip()) if part.strip() else math.nan
        if math.isfinite(parsed):
            values.append(parsed)
    return values


def parse_key_list(text: str) -> List[str]:
    return [part.strip() for part in str(text or "").split(",") if part.strip()]


def normalize_seeds(seeds: Optional[Sequence[Any]]) -> List[int]:
    """
    Normalize seeds to unique unsigned 32-bit integers, keeping order.

    Values are floored and wrapped to 32 bits; 0 becomes 1. An empty or
    missing list falls back to DEFAULT_SEEDS.

    Example:
        >>> normalize_seeds([1337.9, 0, -1, 1337])
        [1337, 1, 4294967295]
    """
    source = list(seeds) if seeds else list(DEFAULT_SEEDS)
    normalized: List[int] = []
    for seed in source:
        parsed = _number(seed)
        if not math.isfinite(parsed):
            continue
        value = (int(math.floor(parsed)) & 0xFFFFFFFF) or 1
        if value not in normalized:
            normalized.append(value)
    return normalized


def _normalize_choices(values: Any, valid: Sequence[str], fallback: List[str]) -> List[str]:
    source = values if isinstance(values, list) else fallback
    normalized = []
    for value in source:
        text = str(value).strip().lower()
        if text in valid and text not in normalized:
            normalized.append(text)
    return normalized or list(dict.fromkeys(fallback))


def normalize_trade_filters(values: Any, fallback: List[str]) -> List[str]:
    return _normalize_choices(values, VALID_TRADE_FILTERS, fallback)


def normalize_trade_directions(values: Any, fallback: List[str]) -> List[str]:
    return _normalize_choices(values, VALID_TRADE_DIRECTIONS, fallback)


def normalize_strategy_params(raw: Any, context: str) -> Optional[Dict[str, StrategyParams]]:
    """
    Validate a {strategyKey: {param: number}} map.

    Raises:
        ValueError: Map, entry or value has the wrong type
    """
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError(f"{context} must be an object keyed by strategy key.")

    normalized: Dict[str, StrategyParams] = {}
    for strategy_key, params in raw.items():
        if not isinstance(params, dict):
            raise ValueError(f"{context}.{strategy_key} must be an object of numeric params.")
        values = {}
        for param, value in params.items():
            number = _number(value)
            if not math.isfinite(number):
                raise ValueError(f"{context}.{strategy_key}.{param} must be numeric.")
            values[param] = number
        normalized[strategy_key] = values
    return normalized


# ============================================================================
# Loading
# ============================================================================

def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Read a batch config file (.json, otherwise YAML).

    Raises:
        ValueError: The document is not a mapping
    """
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            raw = json.load(f)
        else:
            raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Batch config {path} must contain an object.")
    return raw


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> CliOverrides:
    """Overrides from ROBUST_OUT_DIR, ROBUST_SEEDS and ROBUST_STRATEGIES."""
    env = os.environ if environ is None else environ
    overrides = CliOverrides()
    if env.get(ENV_OUT_DIR):
        overrides.out_dir = env[ENV_OUT_DIR]
    if env.get(ENV_SEEDS):
        overrides.seeds = parse_number_list(env[ENV_SEEDS]) or None
    if env.get(ENV_STRATEGIES):
        overrides.strategy_keys = parse_key_list(env[ENV_STRATEGIES]) or None
    return overrides


def merge_overrides(cli: CliOverrides, env: CliOverrides) -> CliOverrides:
    """CLI values win; the environment fills the gaps."""
    return CliOverrides(
        config_path=cli.config_path or env.config_path,
        out_dir=cli.out_dir or env.out_dir,
        strategy_keys=cli.strategy_keys or env.strategy_keys,
        seeds=cli.seeds or env.seeds,
        force=cli.force or env.force,
    )


# ============================================================================
# Resolution
# ============================================================================

def resolve_strategy_keys(raw: Dict[str, Any], overrides: CliOverrides) -> List[str]:
    if overrides.strategy_keys:
        return list(overrides.strategy_keys)
    keys = raw.get("strategyKeys")
    if keys == "all":
        return available_strategy_keys()
    if isinstance(keys, list) and keys:
        return [str(key) for key in keys]
    raise ValueError("No strategy keys provided. Set strategyKeys or pass --strategy.")


def resolve_settings(raw: Dict[str, Any]) -> BacktestSettings:
    """Trading settings from backtestSettings, with the capital block applied on top."""
    values: Dict[str, Any] = {}
    for key, value in (raw.get("backtestSettings") or {}).items():
        field_name = BACKTEST_SETTING_KEYS.get(key)
        if field_name is None:
            logger.debug(f"Ignoring unsupported backtestSettings.{key}")
            continue
        values[field_name] = value

    capital = raw.get("capital") or {}
    for key, field_name in CAPITAL_KEYS.items():
        number = _number(capital.get(key))
        if math.isfinite(number):
            values[field_name] = number
    if "sizingMode" in capital:
        values["sizing_mode"] = "fixed" if capital["sizingMode"] == "fixed" else "percent"

    if "trade_filter_mode" in values:
        values["trade_filter_mode"] = str(values["trade_filter_mode"]).strip().lower()
    if "trade_direction" in values:
        values["trade_direction"] = str(values["trade_direction"]).strip().lower()
    values.setdefault("trade_filter_mode", DEFAULT_TRADE_FILTER)
    values.setdefault("trade_direction", DEFAULT_TRADE_DIRECTION)

    return BacktestSettings(**values)


def resolve_finder(raw: Dict[str, Any]) -> FinderSettings:
    finder = raw.get("finder") or {}
    min_trades = non_negative(finder.get("minTrades"), 40.0)
    max_trades = _number(finder.get("maxTrades"))
    return FinderSettings(
        range_percent=non_negative(finder.get("rangePercent"), 35.0),
        max_runs=positive_int(finder.get("maxRuns"), 120),
        steps=positive_int(finder.get("steps"), 3),
        top_n=positive_int(finder.get("topN"), 10),
        min_trades=min_trades,
        max_trades=max(min_trades, max_trades if math.isfinite(max_trades) else math.inf),
    )


def resolve_policy(raw: Dict[str, Any]) -> GoNoGoPolicy:
    """
    Raises:
        PolicyError: minSeedPasses exceeds minSeedRuns
    """
    policy = raw.get("reportPolicy") or {}
    return GoNoGoPolicy(
        min_seed_runs=positive_int(policy.get("minSeedRuns"), 5),
        min_seed_passes=positive_int(policy.get("minSeedPasses"), 3),
        min_median_cell_pass_rate=clamped_ratio(policy.get("minMedianCellPassRate"), 0.01),
        min_median_stage_c_survivors=non_negative(policy.get("minMedianStageCSurvivors"), 2.0),
        max_median_dd_breach_rate=clamped_ratio(policy.get("maxMedianDDBreachRate"), 0.20),
        max_median_fold_stability_penalty=non_negative(policy.get("maxMedianFoldStabilityPenalty"), 1.8),
    )


def resolve_output(raw: Dict[str, Any], overrides: CliOverrides, cwd: Path) -> OutputOptions:
    output = raw.get("output") or {}
    out_dir = overrides.out_dir or output.get("outDir") or str(cwd)
    return OutputOptions(
        out_dir=str((cwd / Path(out_dir)).resolve()),
        file_prefix=str(output.get("filePrefix") or DEFAULT_FILE_PREFIX),
        write_per_cell_json_summary=output.get("writePerCellJsonSummary") is not False,
        write_per_cell_json_report=output.get("writePerCellJsonReport") is not False,
        write_per_cell_table_report=output.get("writePerCellTableReport") is not False,
        write_batch_json_summary=output.get("writeBatchJsonSummary") is not False,
        write_batch_json_report=output.get("writeBatchJsonReport") is not False,
        write_batch_table_report=output.get("writeBatchTableReport") is not False,
    )


def expand_tasks(
    raw: Dict[str, Any],
    strategy_keys: List[str],
    filters: List[str],
    directions: List[str],
    cwd: Path,
) -> List[BatchTask]:
    """
    Expand enabled matrix rows into one task per (filter, direction).

    Raises:
        ValueError: Matrix missing, a row without dataPath, invalid
            strategyParams, or no enabled rows
    """
    matrix = raw.get("matrix")
    if not isinstance(matrix, list) or not matrix:
        raise ValueError("Missing matrix rows in config.")

    tasks: List[BatchTask] = []
    for i, row in enumerate(matrix):
        if not isinstance(row, dict) or row.get("enabled") is False:
            continue
        if not row.get("dataPath"):
            raise ValueError(f"matrix[{i}] is missing dataPath")

        row_keys = row.get("strategyKeys")
        keys = [str(k) for k in row_keys] if isinstance(row_keys, list) and row_keys else strategy_keys
        params = normalize_strategy_params(row.get("strategyParams"), f"matrix[{i}].strategyParams")
        row_filters = normalize_trade_filters(row.get("tradeFilterModes"), filters)
        row_directions = normalize_trade_directions(row.get("tradeDirections"), directions)
        base_label = str(row.get("label") or "").strip() or f"task-{i + 1}"

        for trade_filter in row_filters:
            for direction in row_directions:
                tasks.append(
                    BatchTask(
                        label=f"{base_label}:{trade_filter}:{direction}",
                        data_path=str((cwd / Path(row["dataPath"])).resolve()),
                        symbol=str(row.get("symbol") or "").strip(),
                        interval=str(row.get("interval") or "").strip(),
                        strategy_keys=list(keys),
                        strategy_params=params,
                        trade_filter_mode=trade_filter,
                        trade_direction=direction,
                    )
                )

    if not tasks:
        raise ValueError("No active matrix tasks after expansion.")
    return tasks


def resolve_config(
    raw: Dict[str, Any],
    overrides: Optional[CliOverrides] = None,
    config_path: Optional[str] = None,
    cwd: Optional[Path] = None,
) -> BatchConfig:
    """
    Resolve a raw config document into the effective batch configuration.

    Args:
        raw: Decoded config document
        overrides: CLI/environment overrides
        config_path: Source path, recorded in the manifest
        cwd: Base for relative paths (defaults to the working directory)

    Returns:
        BatchConfig

    Raises:
        ValueError: Any invalid or missing config value
        PolicyError: Inconsistent reportPolicy
    """
    overrides = overrides or CliOverrides()
    base = cwd or Path.cwd()

    strategy_keys = resolve_strategy_keys(raw, overrides)
    seeds = normalize_seeds(overrides.seeds or raw.get("seeds"))
    if not seeds:
        raise ValueError("No valid seeds provided.")

    settings = resolve_settings(raw)
    filters = normalize_trade_filters(raw.get("tradeFilterModes"), [settings.trade_filter_mode])
    directions = normalize_trade_directions(raw.get("tradeDirections"), [settings.trade_direction])
    tasks = expand_tasks(raw, strategy_keys, filters, directions, base)

    config = BatchConfig(
        tasks=tasks,
        seeds=seeds,
        finder=resolve_finder(raw),
        settings=settings,
        policy=resolve_policy(raw),
        output=resolve_output(raw, overrides, base),
        config_path=config_path,
        force=overrides.force,
    )
    logger.info(
        f"Batch config resolved: tasks={len(tasks)}, seeds={len(seeds)}, "
        f"strategies={','.join(strategy_keys)}"
    )
    return config


def load_batch_config(overrides: CliOverrides, environ: Optional[Mapping[str, str]] = None) -> BatchConfig:
    """
    Load the config file named by the overrides and resolve it.

    Raises:
        ValueError: No config path given, or the config is invalid
        OSError: Config file cannot be read
    """
    merged = merge_overrides(overrides, env_overrides(environ))
    if not merged.config_path:
        raise ValueError("Missing --config <path>.")
    config_path = Path(merged.config_path).resolve()
    raw = load_config_file(config_path)
    return resolve_config(raw, merged, config_path=str(config_path))
