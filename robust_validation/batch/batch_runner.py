"""
Batch Runner - Seeded finder runs over a dataset x strategy matrix

For every expanded task and seed, runs the candidate search on each selected
strategy and writes the per-cell audit records to a run file. The run files
are then aggregated into matrix summaries and go/no-go reports per task and
for the whole batch, and a manifest ties everything together.

Output layout:
    <outDir>/
        <label>__<symbol>_<interval>_<filter>_<direction>/
            run-seed-1337.txt             audit lines "MARKER {json}"
            matrix-summary-<date>.json
            go-no-go-<date>.json
            go-no-go-<date>.txt
        batch-manifest-<date>.json
        batch-matrix-summary-<date>.json
        batch-go-no-go-<date>.json
        batch-go-no-go-<date>.txt

Existing run files are reused unless force is set, so an interrupted batch
can be resumed by running it again.

Usage:
    from robust_validation.batch import BatchRunner, CliOverrides, load_batch_config

    config = load_batch_config(CliOverrides(config_path="config/batch_config.yaml"))
    result = asyncio.run(BatchRunner().run(config))
    print(result.manifest_path)
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from robust_validation.artifacts import sanitize_label, write_json_atomic, write_text_atomic
from robust_validation.audit.audit_aggregator import AuditAggregation, aggregate_files
from robust_validation.audit.audit_sources import format_audit_line
from robust_validation.audit.go_no_go import GoNoGoPolicy, GoNoGoReport, build_report
from robust_validation.audit.report_formatter import format_go_no_go_table, go_no_go_payload
from robust_validation.backtest_config import BacktestSettings, Bar
from robust_validation.batch.batch_config import BatchConfig, BatchTask
from robust_validation.data_loader import ParsedDataset, load_dataset
from robust_validation.engines import RandomSearchFinder, SimpleBacktestEngine, resolve_strategies
from robust_validation.exceptions import NoAuditRecordsError
from robust_validation.interfaces import BacktestEngine, CandidateFinder, Strategy

UNKNOWN_LABEL = "UNKNOWN"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def run_dir_name(task: BatchTask) -> str:
    """`<label>__<symbol>_<interval>_<filter>_<direction>`, each part sanitized."""
    return (
        f"{sanitize_label(task.label)}__{sanitize_label(task.symbol)}_{sanitize_label(task.interval)}_"
        f"{sanitize_label(task.trade_filter_mode)}_{sanitize_label(task.trade_direction)}"
    )


@dataclass
class TaskRun:
    """Files produced for one batch task."""

    task: BatchTask
    run_dir: Path
    run_files: List[Path] = field(default_factory=list)
    summary_json_path: Optional[Path] = None
    report_json_path: Optional[Path] = None
    report_table_path: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.task.label,
            "symbol": self.task.symbol,
            "interval": self.task.interval,
            "tradeFilterMode": self.task.trade_filter_mode,
            "tradeDirection": self.task.trade_direction,
            "strategyKeys": list(self.task.strategy_keys),
            "strategyParams": self.task.strategy_params,
            "runDir": str(self.run_dir),
            "runFiles": [str(p) for p in self.run_files],
            "summaryJsonPath": str(self.summary_json_path) if self.summary_json_path else None,
            "reportJsonPath": str(self.report_json_path) if self.report_json_path else None,
            "reportTablePath": str(self.report_table_path) if self.report_table_path else None,
        }


@dataclass
class BatchResult:
    """Outcome of a batch run."""

    task_runs: List[TaskRun]
    manifest_path: Path
    batch_report: Optional[GoNoGoReport] = None

    @property
    def run_files(self) -> List[Path]:
        return [path for task_run in self.task_runs for path in task_run.run_files]


def write_aggregation_artifacts(
    aggregation: AuditAggregation,
    policy: GoNoGoPolicy,
    directory: Path,
    prefix: str,
    date_tag: str,
    write_summary: bool,
    write_report: bool,
    write_table: bool,
) -> Dict[str, Optional[Path]]:
    """
    Write the matrix summary, go/no-go JSON and go/no-go table for one aggregation.

    Returns:
        {'summary': path, 'report': path, 'table': path} (None when disabled)
    """
    report = build_report(aggregation.summary, policy)
    written: Dict[str, Optional[Path]] = {"summary": None, "report": None, "table": None}

    if write_summary:
        payload = {"generatedAt": _now_iso(), **aggregation.to_dict()}
        written["summary"] = write_json_atomic(directory / f"{prefix}matrix-summary-{date_tag}.json", payload)
    if write_report:
        payload = {"generatedAt": _now_iso(), **go_no_go_payload(aggregation, report)}
        written["report"] = write_json_atomic(directory / f"{prefix}go-no-go-{date_tag}.json", payload)
    if write_table:
        text = format_go_no_go_table(aggregation.summary, report)
        written["table"] = write_text_atomic(directory / f"{prefix}go-no-go-{date_tag}.txt", text)
    return written


class BatchRunner:
    """
    Runs a resolved BatchConfig.

    Seeds, tasks and strategies are processed strictly in order; any failure
    aborts the batch.

    Example:
        >>> runner = BatchRunner()
        >>> result = await runner.run(config)
        >>> len(result.run_files) == len(config.tasks) * len(config.seeds)
        True
    """

    def __init__(self, engine: Optional[BacktestEngine] = None, finder: Optional[CandidateFinder] = None):
        self.engine = engine or SimpleBacktestEngine()
        self.finder = finder
        self._datasets: Dict[str, ParsedDataset] = {}

        logger.info("BatchRunner initialized")

    def _load(self, data_path: str) -> ParsedDataset:
        if data_path not in self._datasets:
            self._datasets[data_path] = load_dataset(data_path)
        return self._datasets[data_path]

    async def run_seed(
        self,
        finder: CandidateFinder,
        task: BatchTask,
        bars: Sequence[Bar],
        strategies: Sequence[Strategy],
        settings: BacktestSettings,
        seed: int,
        run_file: Path,
    ) -> int:
        """
        Search every strategy for one seed and write the run file.

        Returns:
            Number of audit lines written
        """
        lines = []
        for strategy in strategies:
            seed_run = await finder.search(bars, strategy, seed, settings, task.interval)
            if not seed_run.audit_record:
                continue
            record = dict(seed_run.audit_record)
            record.update(
                {
                    "symbol": task.symbol,
                    "tradeFilterMode": task.trade_filter_mode,
                    "tradeDirection": task.trade_direction,
                }
            )
            lines.append(format_audit_line(record))

        write_text_atomic(run_file, "\n".join(lines) + "\n" if lines else "")
        return len(lines)

    async def run_task(self, config: BatchConfig, task: BatchTask, index: int) -> TaskRun:
        """Run all seeds of one task; returns the task with resolved symbol/interval."""
        dataset = self._load(task.data_path)
        symbol = task.symbol or dataset.symbol or UNKNOWN_LABEL
        interval = task.interval or dataset.interval or UNKNOWN_LABEL
        task = BatchTask(
            label=task.label,
            data_path=task.data_path,
            symbol=symbol,
            interval=interval,
            strategy_keys=task.strategy_keys,
            trade_filter_mode=task.trade_filter_mode,
            trade_direction=task.trade_direction,
            strategy_params=task.strategy_params,
        )
        strategies = resolve_strategies(task.strategy_keys, task.strategy_params)
        settings = config.settings.with_overrides(
            trade_filter_mode=task.trade_filter_mode,
            trade_direction=task.trade_direction,
        )
        finder = self.finder or RandomSearchFinder(self.engine, config.finder)

        run_dir = Path(config.output.out_dir) / run_dir_name(task)
        run_dir.mkdir(parents=True, exist_ok=True)
        progress = f"[task {index}/{len(config.tasks)}]"
        logger.info(
            f"{progress} {task.label} | {symbol} {interval} | filter={task.trade_filter_mode} "
            f"direction={task.trade_direction} | strategies={len(strategies)} | bars={len(dataset.bars)}"
        )

        task_run = TaskRun(task=task, run_dir=run_dir)
        for seed in config.seeds:
            run_file = run_dir / f"{config.output.file_prefix}-{seed}.txt"
            if run_file.exists() and not config.force:
                logger.warning(f"{progress}[seed {seed}] reusing existing run file {run_file}")
            else:
                count = await self.run_seed(finder, task, dataset.bars, strategies, settings, seed, run_file)
                logger.info(f"{progress}[seed {seed}] wrote {count} line(s) -> {run_file}")
            task_run.run_files.append(run_file)
        return task_run

    def _aggregate(self, run_files: Sequence[Path], scope: str) -> Optional[AuditAggregation]:
        try:
            return aggregate_files(run_files)
        except NoAuditRecordsError:
            logger.warning(f"No audit records for {scope}; skipping its summary and report")
            return None

    async def run(self, config: BatchConfig, today: Optional[date] = None) -> BatchResult:
        """
        Execute every task, then write summaries, reports and the manifest.

        Args:
            config: Resolved batch configuration
            today: Date used in artifact names (defaults to the UTC date)

        Returns:
            BatchResult with the manifest path and the batch-level report

        Raises:
            DatasetError: A dataset cannot be loaded
            UnknownStrategyError: A task names unregistered strategies
        """
        date_tag = (today or datetime.now(timezone.utc).date()).isoformat()
        out_dir = Path(config.output.out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Expanded tasks: {len(config.tasks)}")
        logger.info(f"Seeds: {', '.join(str(s) for s in config.seeds)}")
        logger.info(f"Output: {out_dir}")

        task_runs = []
        for index, task in enumerate(config.tasks, start=1):
            task_runs.append(await self.run_task(config, task, index))

        output = config.output
        if output.writes_per_cell:
            for task_run in task_runs:
                aggregation = self._aggregate(task_run.run_files, task_run.task.label)
                if aggregation is None:
                    continue
                written = write_aggregation_artifacts(
                    aggregation,
                    config.policy,
                    task_run.run_dir,
                    "",
                    date_tag,
                    output.write_per_cell_json_summary,
                    output.write_per_cell_json_report,
                    output.write_per_cell_table_report,
                )
                task_run.summary_json_path = written["summary"]
                task_run.report_json_path = written["report"]
                task_run.report_table_path = written["table"]

        manifest_path = write_json_atomic(
            out_dir / f"batch-manifest-{date_tag}.json",
            {
                "generatedAt": _now_iso(),
                "configPath": config.config_path,
                "taskCount": len(task_runs),
                "seedCount": len(config.seeds),
                "tasks": [task_run.to_dict() for task_run in task_runs],
            },
        )

        result = BatchResult(task_runs=task_runs, manifest_path=manifest_path)
        if result.run_files:
            aggregation = self._aggregate(result.run_files, "batch")
            if aggregation is not None:
                write_aggregation_artifacts(
                    aggregation,
                    config.policy,
                    out_dir,
                    "batch-",
                    date_tag,
                    output.write_batch_json_summary,
                    output.write_batch_json_report,
                    output.write_batch_table_report,
                )
                result.batch_report = build_report(aggregation.summary, config.policy)

        logger.info(f"Batch complete. Tasks: {len(task_runs)}, run files: {len(result.run_files)}")
        logger.info(f"Manifest: {manifest_path}")
        return result
