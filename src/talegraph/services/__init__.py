"""Service layer exports."""

from .errors import EditorError, SaveLoadError
from .script_parser import ScriptParser
from .navigator import Navigator, StoryNodeView
from .save_manager import QUICK_SAVE_SLOT, SaveManager
from .editor_service import StoryEditorService
from .story_graph_validator import Issue, format_issue, validate_chapter_graph

__all__ = [
    "EditorError",
    "SaveLoadError",
    "ScriptParser",
    "Navigator",
    "StoryNodeView",
    "QUICK_SAVE_SLOT",
    "SaveManager",
    "StoryEditorService",
    "Issue",
    "format_issue",
    "validate_chapter_graph",
]
