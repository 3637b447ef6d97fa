"""
Artifact Writers

Helpers for the JSON and text files the pipeline persists (stress reports,
run files, matrix summaries, go/no-go reports, batch manifests).

Files are written to a `.tmp` sibling first and moved into place with
os.replace, so readers never see a half-written artifact.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Union

from loguru import logger

UNSAFE_LABEL_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

PathLike = Union[str, Path]


def sanitize_label(value: str, replacement: str = "_") -> str:
    """Replace runs of characters outside [a-zA-Z0-9._-] for use in file names."""
    return UNSAFE_LABEL_PATTERN.sub(replacement, str(value))


def write_text_atomic(path: PathLike, text: str) -> Path:
    """Write text via a temp file and atomic replace; parent dirs are created."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_name(target.name + ".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(temp_path, target)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise
    return target


def to_json_text(payload: Any) -> str:
    """Stable JSON rendering (2-space indent, trailing newline)."""
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def write_json_atomic(path: PathLike, payload: Any) -> Path:
    return write_text_atomic(path, to_json_text(payload))


def next_available_path(path: PathLike) -> Path:
    """
    First non-existing path among `name.ext`, `name-2.ext`, `name-3.ext`, ...

    Example:
        >>> next_available_path("out/sol-1h-rsi-stress.json")  # first exists
        PosixPath('out/sol-1h-rsi-stress-2.json')
    """
    target = Path(path)
    if not target.exists():
        return target

    counter = 2
    while True:
        candidate = target.with_name(f"{target.stem}-{counter}{target.suffix}")
        if not candidate.exists():
            logger.debug(f"{target.name} exists, using {candidate.name}")
            return candidate
        counter += 1
