"""
Batch Run Module

Seeded finder runs over a dataset x strategy x filter x direction matrix,
followed by per-task and batch-wide summaries and go/no-go reports.

Key Components:
- load_batch_config / resolve_config: YAML/JSON config plus CLI and env overrides
- BatchRunner: Task execution, run files, aggregation artifacts, manifest

Usage:
    from robust_validation.batch import BatchRunner, CliOverrides, load_batch_config

    config = load_batch_config(CliOverrides(config_path="config/batch_config.yaml", seeds=[1337]))
    result = await BatchRunner().run(config)
"""

from .batch_config import (
    DEFAULT_FILE_PREFIX,
    BatchConfig,
    BatchTask,
    CliOverrides,
    OutputOptions,
    env_overrides,
    load_batch_config,
    normalize_seeds,
    parse_key_list,
    parse_number_list,
    resolve_config,
)
from .batch_runner import BatchResult, BatchRunner, TaskRun, run_dir_name

__all__ = [
    'DEFAULT_FILE_PREFIX',
    'BatchConfig',
    'BatchTask',
    'CliOverrides',
    'OutputOptions',
    'env_overrides',
    'load_batch_config',
    'normalize_seeds',
    'parse_key_list',
    'parse_number_list',
    'resolve_config',
    'BatchResult',
    'BatchRunner',
    'TaskRun',
    'run_dir_name',
]
