"""Domain model exports."""

from .conditions import evaluate_condition
from .models import AudioData, Chapter, NodeType, StoryChoice, StoryNode, TransitionType, VisualData
from .save_entry import SaveEntry, SaveEntryContext, SaveEntryMeta, SaveEntryMetadata
from .state import GameState

__all__ = [
    "AudioData",
    "Chapter",
    "GameState",
    "NodeType",
    "SaveEntry",
    "SaveEntryContext",
    "SaveEntryMeta",
    "SaveEntryMetadata",
    "StoryChoice",
    "StoryNode",
    "TransitionType",
    "VisualData",
    "evaluate_condition",
]
