from datetime import datetime, timezone

import pytest

from talegraph.data.errors import DataValidationError
from talegraph.data.serialization import (
    game_state_from_dict,
    is_save_entry_payload,
    node_from_dict,
    node_to_dict,
    parse_datetime,
    save_entry_from_dict,
    save_entry_to_dict,
)
from talegraph.domain.models import AudioData, NodeType, StoryChoice, TransitionType, VisualData
from talegraph.domain.save_entry import SaveEntry, SaveEntryContext, SaveEntryMeta
from talegraph.domain.state import GameState

from tests.helpers.story_builders import make_node


def test_node_dict_keeps_all_fields() -> None:
    choice = StoryChoice(text="Go", target_node_id="b", condition="chose:x", is_one_time=True)
    node = make_node("ch1_a", choices=[choice], node_type=NodeType.ENDING, ending_condition="chose:x")
    node.visuals = VisualData(background_image="bg.png", transition=TransitionType.FADE)
    node.audio = AudioData(bgm_file="theme.mp3", bgm_volume=0.5)

    restored = node_from_dict(node_to_dict(node))

    assert restored == node
    assert restored.choices[0].id == choice.id


def test_node_from_dict_applies_defaults() -> None:
    node = node_from_dict({"id": "n1"})

    assert node.type is NodeType.DIALOGUE
    assert node.chapter_id == ""
    assert node.choices == []
    assert node.visuals is None


def test_node_type_accepts_legacy_integer_codes_and_unknown_values() -> None:
    assert node_from_dict({"id": "n", "type": 2}).type is NodeType.ENDING
    assert node_from_dict({"id": "n", "type": "choice"}).type is NodeType.CHOICE
    assert node_from_dict({"id": "n", "type": "Cutscene"}).type is NodeType.DIALOGUE


def test_node_from_dict_rejects_wrong_structure() -> None:
    with pytest.raises(DataValidationError):
        node_from_dict({"id": ""})
    with pytest.raises(DataValidationError):
        node_from_dict({"id": "n", "choices": {"not": "a list"}})
    with pytest.raises(DataValidationError):
        node_from_dict(["not", "a", "dict"])


def test_game_state_deduplicates_chosen_ids() -> None:
    state = game_state_from_dict({"chosen_choice_ids": ["a", "b", "a"], "current_node_id": "n"})

    assert state.chosen_choice_ids == ["a", "b"]
    assert state.current_node_id == "n"


def test_save_entry_round_trip_and_detection() -> None:
    moment = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
    entry = SaveEntry(
        meta=SaveEntryMeta(slot="s1", name="First", created_at=moment, updated_at=moment),
        state=GameState(chosen_choice_ids=["c1"], current_chapter_id="ch1", current_node_id="ch1_a"),
        context=SaveEntryContext(current_chapter_id="ch1", current_node_id="ch1_a", background_image="bg.png"),
    )

    payload = save_entry_to_dict(entry)

    assert is_save_entry_payload(payload)
    assert not is_save_entry_payload({"chosen_choice_ids": []})
    assert save_entry_from_dict(payload) == entry


def test_parse_datetime_treats_naive_values_as_utc() -> None:
    parsed = parse_datetime("2024-01-02T03:04:05", "when")

    assert parsed.tzinfo is not None
    assert parsed.utcoffset().total_seconds() == 0
    assert parse_datetime("2024-01-02T03:04:05Z", "when") == parsed


def test_parse_datetime_rejects_garbage() -> None:
    with pytest.raises(DataValidationError):
        parse_datetime("yesterday", "when")
