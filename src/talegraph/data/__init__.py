"""Data layer: storage backends, serialization and paths."""

from .errors import DataError, DataLoadError, DataValidationError, StorageError
from .paths import get_repo_root, get_stories_path

__all__ = [
    "DataError",
    "DataLoadError",
    "DataValidationError",
    "StorageError",
    "get_repo_root",
    "get_stories_path",
]
