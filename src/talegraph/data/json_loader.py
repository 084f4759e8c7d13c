"""Low-level JSON helpers for the flat-file backend."""
from __future__ import annotations

import json
import os
from pathlib import Path

from .errors import DataLoadError, StorageError


def load_json(path: Path) -> object:
    """Load JSON from disk and raise DataLoadError on failure."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise DataLoadError(f"Story file not found: {path}") from exc
    except OSError as exc:
        raise DataLoadError(f"Unable to read story file: {path}") from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DataLoadError(f"Invalid JSON in {path}: {exc}") from exc


def dump_json(payload: object) -> str:
    """Return the pretty-printed document text for a payload."""
    return json.dumps(payload, indent=2, ensure_ascii=False)


def write_text_atomic(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` via a sibling temp file; raise StorageError on failure."""
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as exc:
        raise StorageError(f"Unable to write {path}: {exc}") from exc
