"""Story graph structures shared by the parser, storage and runtime."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List


class NodeType(str, Enum):
    """Kind of content a story node holds."""

    DIALOGUE = "Dialogue"
    CHOICE = "Choice"
    ENDING = "Ending"
    NARRATION = "Narration"


class TransitionType(str, Enum):
    """Background transition applied when a node is entered."""

    NONE = "None"
    FADE = "Fade"
    DISSOLVE = "Dissolve"
    WIPE = "Wipe"


def new_choice_id() -> str:
    """Return a fresh, globally unique choice id."""
    return str(uuid.uuid4())


@dataclass(slots=True)
class Chapter:
    """Ordered container of nodes."""

    id: str
    title: str = ""
    order_index: int = 0
    description: str | None = None


@dataclass(slots=True)
class VisualData:
    background_image: str | None = None
    transition: TransitionType = TransitionType.NONE


@dataclass(slots=True)
class AudioData:
    bgm_file: str | None = None
    bgm_volume: float = 0.8
    se_file: str | None = None
    voice_file: str | None = None


@dataclass(slots=True)
class StoryChoice:
    """Labeled jump option attached to a node.

    ``id`` is generated once and must survive edits, since it is what the
    runtime records as "chosen".
    """

    text: str = ""
    target_node_id: str = ""
    target_chapter_id: str | None = None
    condition: str | None = None
    is_one_time: bool = False
    id: str = field(default_factory=new_choice_id)


@dataclass(slots=True)
class StoryNode:
    """One unit of narrative content."""

    id: str
    chapter_id: str
    type: NodeType = NodeType.DIALOGUE
    speaker: str | None = None
    text: str = ""
    order_index: int = 0
    next_id: str | None = None
    prev_id: str | None = None
    visuals: VisualData | None = None
    audio: AudioData | None = None
    choices: List[StoryChoice] = field(default_factory=list)
    ending_condition: str | None = None

    @property
    def is_ending(self) -> bool:
        return self.type is NodeType.ENDING
