"""Story storage backends."""

from .base import DEFAULT_SLOT, StoryDataService, normalize_slot, repair_node_id
from .factory import BACKENDS, create_data_service
from .json_repo import JsonStoryDataService
from .sqlite_repo import SqliteStoryDataService

__all__ = [
    "BACKENDS",
    "DEFAULT_SLOT",
    "JsonStoryDataService",
    "SqliteStoryDataService",
    "StoryDataService",
    "create_data_service",
    "normalize_slot",
    "repair_node_id",
]
