import json

import pytest

from talegraph.domain.models import AudioData, Chapter, NodeType, StoryChoice, VisualData
from talegraph.services import Navigator

from tests.helpers.story_builders import make_linear_chapter, make_node, make_service, store_chapter


def _branching_story(service):
    """ch1: a -> (Left: b | Right once: c); b/c -> end. ch2: linear three nodes."""
    left = StoryChoice(text="Left", target_node_id="ch1_b", id="left")
    right = StoryChoice(text="Right", target_node_id="c", is_one_time=True, id="right")
    go_on = StoryChoice(text="继续", target_node_id="ch1_b", id="go-on")
    nodes = [
        make_node("ch1_a", node_type=NodeType.CHOICE, choices=[left, right, go_on], order_index=0),
        make_node("ch1_b", order_index=1, next_id="ch1_end", prev_id="ch1_a"),
        make_node("ch1_c", order_index=2, next_id="ch1_end", prev_id="ch1_a"),
        make_node(
            "ch1_end",
            order_index=3,
            node_type=NodeType.ENDING,
            next_id="ch1_a",
            ending_condition="chose:right",
        ),
    ]
    store_chapter(service, "ch1", nodes, order_index=0)
    store_chapter(service, "ch2", make_linear_chapter("ch2", 3), order_index=1)


@pytest.fixture
def service(tmp_path):
    data_service = make_service("json", tmp_path)
    yield data_service
    data_service.close()


@pytest.fixture
def navigator(service):
    _branching_story(service)
    nav = Navigator(service)
    nav.initialize()
    return nav


def test_initialize_starts_at_first_chapter(navigator) -> None:
    assert navigator.current_chapter_id == "ch1"
    assert navigator.current_node.id == "ch1_a"
    assert [chapter.id for chapter in navigator.chapters] == ["ch1", "ch2"]


def test_initialize_without_chapters(service) -> None:
    navigator = Navigator(service)
    navigator.initialize()

    assert navigator.current_node is None
    assert navigator.get_current_node_view() is None
    assert navigator.visible_choices() == []
    assert not navigator.can_go_to_next_chapter()


def test_continue_choices_are_hidden(navigator) -> None:
    labels = [choice.text for choice in navigator.visible_choices()]

    assert labels == ["Left", "Right"]
    assert navigator.get_current_node_view().choices == ["Left", "Right"]
    assert not navigator.can_next()
    assert not navigator.can_restart()
    assert not navigator.can_go_to_next_chapter()


def test_choose_records_choice_and_autosaves(navigator, service) -> None:
    assert navigator.choose_index(1) is True

    assert navigator.current_node.id == "ch1_c"
    assert navigator.chosen_choice_ids == ["right"]
    assert navigator.history == ["ch1_a"]
    saved = service.load_game_state("default")
    assert saved.chosen_choice_ids == ["right"]
    assert saved.current_node_id == "ch1_c"


def test_one_time_choice_disappears_after_use(navigator) -> None:
    navigator.choose_index(1)
    navigator.prev()

    assert navigator.current_node.id == "ch1_a"
    assert [choice.text for choice in navigator.visible_choices()] == ["Left"]


def test_choose_index_out_of_range(navigator) -> None:
    with pytest.raises(IndexError):
        navigator.choose_index(5)
    with pytest.raises(IndexError):
        navigator.choose_index(-1)


def test_next_and_prev_follow_links(navigator) -> None:
    navigator.choose_index(0)

    assert navigator.can_next() and navigator.can_prev()
    assert navigator.next() is True
    assert navigator.current_node.id == "ch1_end"
    assert navigator.prev() is False
    assert navigator.history == ["ch1_a", "ch1_b"]


def test_ending_condition_gates_next_chapter(navigator) -> None:
    navigator.choose_index(0)
    navigator.next()

    assert navigator.current_node.is_ending
    assert not navigator.can_go_to_next_chapter()
    assert navigator.go_to_next_chapter() is False

    navigator.restart()
    navigator.choose_index(1)
    navigator.next()

    assert navigator.can_go_to_next_chapter()
    assert navigator.go_to_next_chapter() is True
    assert navigator.current_chapter_id == "ch2"
    assert navigator.current_node.id == "ch2_node_0000"


def test_last_node_of_last_chapter_has_no_next_chapter(navigator) -> None:
    navigator.load_chapter("ch2")
    navigator.next()
    navigator.next()

    assert navigator.current_node.id == "ch2_node_0002"
    assert not navigator.can_next()
    assert not navigator.can_go_to_next_chapter()


def test_chapter_that_runs_out_allows_next_chapter(service) -> None:
    store_chapter(service, "one", make_linear_chapter("one", 1), order_index=0)
    store_chapter(service, "two", make_linear_chapter("two", 1), order_index=1)
    navigator = Navigator(service)
    navigator.initialize()

    assert navigator.can_go_to_next_chapter()
    assert navigator.go_to_next_chapter()
    assert navigator.current_chapter_id == "two"


def test_short_id_resolves_in_current_chapter(navigator) -> None:
    assert navigator.navigate_to("b") is True
    assert navigator.current_node.id == "ch1_b"


def test_cross_chapter_id_resolves_from_storage(navigator) -> None:
    assert navigator.navigate_to("ch2_node_0001") is True
    assert navigator.current_chapter_id == "ch2"


def test_scan_resolves_case_and_suffix(navigator, service) -> None:
    store_chapter(service, "ch3", [make_node("ch3_secret_room", "ch3")], order_index=2)
    navigator.load_chapter("ch1")

    assert navigator.navigate_to("CH3_SECRET_ROOM") is True
    assert navigator.current_node.id == "ch3_secret_room"

    navigator.load_chapter("ch1")
    assert navigator.navigate_to("room") is True
    assert navigator.current_node.id == "ch3_secret_room"


def test_unresolved_target_keeps_position(navigator) -> None:
    assert navigator.navigate_to("nowhere") is False
    assert navigator.navigate_to("   ") is False
    assert navigator.current_node.id == "ch1_a"
    assert navigator.history == []


def test_choice_targeting_chapter(navigator, service) -> None:
    jump = StoryChoice(text="Skip ahead", target_chapter_id="ch2", id="skip")

    assert navigator.choose(jump) is True
    assert navigator.current_chapter_id == "ch2"
    assert "skip" in navigator.chosen_choice_ids


def test_missing_chapter_target_is_tried_as_node_id(navigator) -> None:
    jump = StoryChoice(text="Secret", target_chapter_id="ch2_node_0002", id="secret")

    assert navigator.choose(jump) is True
    assert navigator.current_chapter_id == "ch2"
    assert navigator.current_node.id == "ch2_node_0002"

    lost = StoryChoice(text="Lost", target_chapter_id="nowhere", id="lost")
    assert navigator.choose(lost) is False
    assert navigator.current_node.id == "ch2_node_0002"
    assert "lost" in navigator.chosen_choice_ids


def test_restart_returns_to_first_chapter(navigator) -> None:
    navigator.load_chapter("ch2")
    navigator.next()

    assert navigator.restart() is True
    assert navigator.current_node.id == "ch1_a"
    assert navigator.history == []
    assert navigator.restart() is False


def test_select_chapter(navigator, service) -> None:
    service.save_chapter(Chapter(id="empty", order_index=9))

    assert navigator.select_chapter(" ") is False
    assert navigator.select_chapter("empty") is False
    assert navigator.current_node is None
    assert navigator.select_chapter("ch2") is True


def test_background_and_music_are_sticky(service) -> None:
    nodes = make_linear_chapter("ch1", 3)
    nodes[0].visuals = VisualData(background_image="forest.png")
    nodes[0].audio = AudioData(bgm_file="theme.mp3")
    nodes[2].visuals = VisualData(background_image="castle.png")
    store_chapter(service, "ch1", nodes)
    navigator = Navigator(service)
    navigator.initialize()

    navigator.next()
    assert navigator.background_image == "forest.png"
    assert navigator.current_bgm_path == "theme.mp3"

    navigator.next()
    view = navigator.get_current_node_view()
    assert view.background_image == "castle.png"
    assert view.bgm_path == "theme.mp3"


def test_restore_and_snapshot(navigator) -> None:
    state = navigator.snapshot()
    state.chosen_choice_ids = ["right", "right", "left"]

    navigator.restore(state)

    assert navigator.chosen_choice_ids == ["right", "left"]
    assert navigator.evaluate_condition("chose('left') and chose('right')")
    assert navigator.snapshot().current_node_id == "ch1_a"


def test_unconditional_ending_opens_next_chapter(service) -> None:
    store_chapter(
        service,
        "one",
        [make_node("one_end", "one", node_type=NodeType.ENDING, next_id="one_end")],
        order_index=0,
    )
    store_chapter(service, "two", make_linear_chapter("two", 1), order_index=1)
    navigator = Navigator(service)
    navigator.initialize()

    assert navigator.can_next()
    assert navigator.can_go_to_next_chapter()


def test_initialize_keeps_pending_edits(tmp_path) -> None:
    service = make_service("json", tmp_path, debounce_seconds=60)
    store_chapter(service, "ch1", make_linear_chapter("ch1", 1), order_index=0)
    service.flush_pending()
    store_chapter(service, "ch2", make_linear_chapter("ch2", 1), order_index=1)

    navigator = Navigator(service)
    navigator.initialize()
    service.close()

    assert [chapter.id for chapter in navigator.chapters] == ["ch1", "ch2"]
    document = json.loads(service.story_file.read_text(encoding="utf-8"))
    assert sorted(chapter["id"] for chapter in document["chapters"]) == ["ch1", "ch2"]
