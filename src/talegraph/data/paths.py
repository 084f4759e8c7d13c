"""Helpers for resolving story data locations."""
from __future__ import annotations

import sys
from pathlib import Path

STORY_FILE_NAME = "story_data.json"
SQLITE_FILE_NAME = "story_data.db"
SAVES_DIR_NAME = "saves"


def get_repo_root() -> Path:
    """Return the repository root."""
    return Path(__file__).resolve().parents[3]


def get_stories_path(base_path: Path | str | None = None) -> Path:
    """Return the directory holding story data and save slots."""
    if base_path is not None:
        return Path(base_path)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent / "Stories"
    return get_repo_root() / "Stories"


def get_dev_mirror_path() -> Path | None:
    """Return the project-level story file mirrored during development, if any."""
    if getattr(sys, "frozen", False):
        return None
    project_dir = get_repo_root() / "Stories"
    if not project_dir.is_dir():
        return None
    return project_dir / STORY_FILE_NAME
