"""Conversion between domain objects and JSON-compatible payloads."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, TypeVar

from talegraph.data.errors import DataValidationError
from talegraph.domain.models import (
    AudioData,
    Chapter,
    NodeType,
    StoryChoice,
    StoryNode,
    TransitionType,
    VisualData,
)
from talegraph.domain.save_entry import SaveEntry, SaveEntryContext, SaveEntryMeta
from talegraph.domain.state import GameState

Payload = Dict[str, Any]
E = TypeVar("E", bound=Enum)

# Integer codes written by older stores, in declaration order.
_LEGACY_NODE_TYPES = (NodeType.DIALOGUE, NodeType.CHOICE, NodeType.ENDING, NodeType.NARRATION)
_LEGACY_TRANSITIONS = (TransitionType.NONE, TransitionType.FADE, TransitionType.DISSOLVE, TransitionType.WIPE)


def chapter_to_dict(chapter: Chapter) -> Payload:
    return {
        "id": chapter.id,
        "title": chapter.title,
        "order_index": chapter.order_index,
        "description": chapter.description,
    }


def chapter_from_dict(raw: object) -> Chapter:
    data = _require_mapping(raw, "chapter")
    return Chapter(
        id=_require_str(data.get("id"), "chapter id"),
        title=_optional_str(data.get("title"), "chapter title") or "",
        order_index=_optional_int(data.get("order_index"), "chapter order_index"),
        description=_optional_str(data.get("description"), "chapter description"),
    )


def visuals_to_dict(visuals: VisualData) -> Payload:
    return {"background_image": visuals.background_image, "transition": visuals.transition.value}


def visuals_from_dict(raw: object) -> VisualData:
    data = _require_mapping(raw, "visuals")
    return VisualData(
        background_image=_optional_str(data.get("background_image"), "visuals background_image"),
        transition=_coerce_enum(data.get("transition"), TransitionType, _LEGACY_TRANSITIONS, TransitionType.NONE),
    )


def audio_to_dict(audio: AudioData) -> Payload:
    return {
        "bgm_file": audio.bgm_file,
        "bgm_volume": audio.bgm_volume,
        "se_file": audio.se_file,
        "voice_file": audio.voice_file,
    }


def audio_from_dict(raw: object) -> AudioData:
    data = _require_mapping(raw, "audio")
    volume = data.get("bgm_volume", 0.8)
    if isinstance(volume, bool) or not isinstance(volume, (int, float)):
        raise DataValidationError("audio bgm_volume must be a number.")
    return AudioData(
        bgm_file=_optional_str(data.get("bgm_file"), "audio bgm_file"),
        bgm_volume=float(volume),
        se_file=_optional_str(data.get("se_file"), "audio se_file"),
        voice_file=_optional_str(data.get("voice_file"), "audio voice_file"),
    )


def choice_to_dict(choice: StoryChoice) -> Payload:
    return {
        "id": choice.id,
        "text": choice.text,
        "target_node_id": choice.target_node_id,
        "target_chapter_id": choice.target_chapter_id,
        "condition": choice.condition,
        "is_one_time": choice.is_one_time,
    }


def choice_from_dict(raw: object, context: str = "choice") -> StoryChoice:
    data = _require_mapping(raw, context)
    choice = StoryChoice(
        text=_optional_str(data.get("text"), f"{context} text") or "",
        target_node_id=_optional_str(data.get("target_node_id"), f"{context} target_node_id") or "",
        target_chapter_id=_optional_str(data.get("target_chapter_id"), f"{context} target_chapter_id"),
        condition=_optional_str(data.get("condition"), f"{context} condition"),
        is_one_time=bool(data.get("is_one_time", False)),
    )
    choice_id = _optional_str(data.get("id"), f"{context} id")
    if choice_id:
        choice.id = choice_id
    return choice


def choices_to_list(choices: List[StoryChoice]) -> List[Payload]:
    return [choice_to_dict(choice) for choice in choices]


def choices_from_list(raw: object, node_id: str) -> List[StoryChoice]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise DataValidationError(f"story node '{node_id}' choices must be a list if provided.")
    return [
        choice_from_dict(entry, f"story node '{node_id}' choices[{index}]")
        for index, entry in enumerate(raw)
    ]


def node_to_dict(node: StoryNode) -> Payload:
    return {
        "id": node.id,
        "chapter_id": node.chapter_id,
        "type": node.type.value,
        "speaker": node.speaker,
        "text": node.text,
        "order_index": node.order_index,
        "next_id": node.next_id,
        "prev_id": node.prev_id,
        "visuals": visuals_to_dict(node.visuals) if node.visuals is not None else None,
        "audio": audio_to_dict(node.audio) if node.audio is not None else None,
        "choices": choices_to_list(node.choices),
        "ending_condition": node.ending_condition,
    }


def node_from_dict(raw: object) -> StoryNode:
    data = _require_mapping(raw, "story node")
    node_id = _require_str(data.get("id"), "story node id")
    context = f"story node '{node_id}'"
    visuals_raw = data.get("visuals")
    audio_raw = data.get("audio")
    return StoryNode(
        id=node_id,
        chapter_id=_optional_str(data.get("chapter_id"), f"{context} chapter_id") or "",
        type=_coerce_enum(data.get("type"), NodeType, _LEGACY_NODE_TYPES, NodeType.DIALOGUE),
        speaker=_optional_str(data.get("speaker"), f"{context} speaker"),
        text=_optional_str(data.get("text"), f"{context} text") or "",
        order_index=_optional_int(data.get("order_index"), f"{context} order_index"),
        next_id=_optional_str(data.get("next_id"), f"{context} next_id") or None,
        prev_id=_optional_str(data.get("prev_id"), f"{context} prev_id") or None,
        visuals=visuals_from_dict(visuals_raw) if visuals_raw is not None else None,
        audio=audio_from_dict(audio_raw) if audio_raw is not None else None,
        choices=choices_from_list(data.get("choices"), node_id),
        ending_condition=_optional_str(data.get("ending_condition"), f"{context} ending_condition") or None,
    )


def game_state_to_dict(state: GameState) -> Payload:
    return {
        "chosen_choice_ids": list(state.chosen_choice_ids),
        "variables": dict(state.variables),
        "current_chapter_id": state.current_chapter_id,
        "current_node_id": state.current_node_id,
    }


def game_state_from_dict(raw: object) -> GameState:
    data = _require_mapping(raw, "game state")
    chosen_raw = data.get("chosen_choice_ids") or []
    if not isinstance(chosen_raw, list) or not all(isinstance(item, str) for item in chosen_raw):
        raise DataValidationError("game state chosen_choice_ids must be a list of strings.")
    variables_raw = data.get("variables") or {}
    if not isinstance(variables_raw, dict):
        raise DataValidationError("game state variables must be an object/dict.")
    state = GameState(
        variables={str(key): str(value) for key, value in variables_raw.items()},
        current_chapter_id=_optional_str(data.get("current_chapter_id"), "game state current_chapter_id"),
        current_node_id=_optional_str(data.get("current_node_id"), "game state current_node_id"),
    )
    for choice_id in chosen_raw:
        state.record_choice(choice_id)
    return state


def is_save_entry_payload(raw: object) -> bool:
    """Return True if ``raw`` looks like a SaveEntry envelope rather than a bare GameState."""
    return isinstance(raw, dict) and isinstance(raw.get("meta"), dict)


def save_entry_to_dict(entry: SaveEntry) -> Payload:
    return {
        "version": entry.version,
        "meta": {
            "slot": entry.meta.slot,
            "name": entry.meta.name,
            "created_at": format_datetime(entry.meta.created_at),
            "updated_at": format_datetime(entry.meta.updated_at),
            "thumbnail_base64": entry.meta.thumbnail_base64,
        },
        "state": game_state_to_dict(entry.state),
        "context": {
            "current_chapter_id": entry.context.current_chapter_id,
            "current_node_id": entry.context.current_node_id,
            "background_image": entry.context.background_image,
            "current_bgm_path": entry.context.current_bgm_path,
        },
    }


def save_entry_from_dict(raw: object) -> SaveEntry:
    data = _require_mapping(raw, "save entry")
    meta_raw = _require_mapping(data.get("meta"), "save entry meta")
    context_raw = data.get("context") or {}
    context_data = _require_mapping(context_raw, "save entry context")
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise DataValidationError("save entry version must be an integer.")
    state_raw = data.get("state")
    return SaveEntry(
        version=version,
        meta=SaveEntryMeta(
            slot=_optional_str(meta_raw.get("slot"), "save entry meta slot") or "",
            name=_optional_str(meta_raw.get("name"), "save entry meta name") or "",
            created_at=parse_datetime(meta_raw.get("created_at"), "save entry meta created_at"),
            updated_at=parse_datetime(meta_raw.get("updated_at"), "save entry meta updated_at"),
            thumbnail_base64=_optional_str(meta_raw.get("thumbnail_base64"), "save entry meta thumbnail"),
        ),
        state=game_state_from_dict(state_raw) if state_raw is not None else GameState(),
        context=SaveEntryContext(
            current_chapter_id=_optional_str(context_data.get("current_chapter_id"), "save entry context chapter"),
            current_node_id=_optional_str(context_data.get("current_node_id"), "save entry context node"),
            background_image=_optional_str(context_data.get("background_image"), "save entry context background"),
            current_bgm_path=_optional_str(context_data.get("current_bgm_path"), "save entry context bgm"),
        ),
    )


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_datetime(value: object, context: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC, missing ones as the epoch."""
    if value is None or value == "":
        return datetime.min.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise DataValidationError(f"{context} must be an ISO-8601 string.")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise DataValidationError(f"{context} is not a valid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_enum(value: object, enum_type: type[E], legacy: tuple[E, ...], default: E) -> E:
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return legacy[value] if 0 <= value < len(legacy) else default
    if isinstance(value, str):
        lowered = value.strip().lower()
        for member in enum_type:
            if lowered in (member.value.lower(), member.name.lower()):
                return member
    return default


def _require_mapping(value: object, context: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise DataValidationError(f"{context} must be an object/dict.")
    return value


def _require_str(value: object, context: str) -> str:
    if not isinstance(value, str) or not value:
        raise DataValidationError(f"{context} must be a non-empty string.")
    return value


def _optional_str(value: object, context: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise DataValidationError(f"{context} must be a string if provided.")
    return value


def _optional_int(value: object, context: str, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise DataValidationError(f"{context} must be an integer.")
    return value
