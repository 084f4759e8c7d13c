"""Build the configured storage backend."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from talegraph.core.logger import get_logger
from talegraph.data import paths
from talegraph.data.errors import DataValidationError
from talegraph.data.repositories.base import StoryDataService
from talegraph.data.repositories.json_repo import JsonStoryDataService
from talegraph.data.repositories.sqlite_repo import SqliteStoryDataService

logger = get_logger(__name__)

BACKENDS = ("json", "sqlite")


def create_data_service(
    backend: str = "json",
    data_dir: Path | str | None = None,
    **options: Any,
) -> StoryDataService:
    """Return an uninitialized ``StoryDataService`` for ``backend``.

    ``options`` are passed to the backend constructor (for example
    ``debounce_seconds`` for the flat-file backend). The flat-file backend
    mirrors its writes to ``paths.get_dev_mirror_path()`` unless
    ``mirror_path`` is given.
    """
    name = (backend or "").strip().lower()
    directory = paths.get_stories_path(data_dir)
    if name == "json":
        options.setdefault("mirror_path", paths.get_dev_mirror_path())
        logger.debug("Using flat-file storage in %s", directory)
        return JsonStoryDataService(directory, **options)
    if name == "sqlite":
        logger.debug("Using SQLite storage in %s", directory)
        return SqliteStoryDataService(directory / paths.SQLITE_FILE_NAME, **options)
    raise DataValidationError(f"Unknown storage backend '{backend}'; expected one of {', '.join(BACKENDS)}.")
