import pytest

from talegraph.data.errors import StorageError
from talegraph.domain.models import NodeType, StoryChoice, VisualData
from talegraph.services import QUICK_SAVE_SLOT, Navigator, SaveLoadError, SaveManager

from tests.helpers.story_builders import FakeClock, make_linear_chapter, make_node, make_service, store_chapter


@pytest.fixture(params=["json", "sqlite"])
def service(request, tmp_path):
    data_service = make_service(request.param, tmp_path, clock=FakeClock())
    nodes = [
        make_node(
            "ch1_a",
            node_type=NodeType.CHOICE,
            choices=[StoryChoice(text="Go", target_node_id="ch1_b", id="go")],
        ),
        make_node("ch1_b", order_index=1, next_id="ch1_c", prev_id="ch1_a"),
        make_node("ch1_c", order_index=2, prev_id="ch1_b"),
    ]
    nodes[1].visuals = VisualData(background_image="hall.png")
    store_chapter(data_service, "ch1", nodes)
    store_chapter(data_service, "ch2", make_linear_chapter("ch2", 2), order_index=1)
    yield data_service
    data_service.close()


def _session(service):
    navigator = Navigator(service)
    navigator.initialize()
    return navigator, SaveManager(service, navigator, clock=FakeClock())


def test_save_and_load_restores_position_and_choices(service) -> None:
    navigator, saves = _session(service)
    navigator.choose_index(0)
    navigator.next()

    entry = saves.save_to_slot("alpha", "Before the gate")

    assert entry.meta.name == "Before the gate"
    assert entry.context.background_image == "hall.png"
    assert saves.current_slot == "alpha"

    fresh_navigator, fresh_saves = _session(service)
    assert fresh_navigator.current_node.id == "ch1_a"

    assert fresh_saves.load_slot("alpha") is True
    assert fresh_navigator.current_node.id == "ch1_c"
    assert fresh_navigator.chosen_choice_ids == ["go"]
    assert fresh_saves.current_slot == "alpha"


def test_restore_across_chapters(service) -> None:
    navigator, saves = _session(service)
    navigator.load_chapter("ch2")
    navigator.next()
    saves.save_to_slot("later")

    fresh_navigator, fresh_saves = _session(service)
    fresh_saves.load_slot("later")

    assert fresh_navigator.current_chapter_id == "ch2"
    assert fresh_navigator.current_node.id == "ch2_node_0001"


def test_unnamed_save_gets_timestamp_slot(service) -> None:
    _, saves = _session(service)

    entry = saves.save_to_slot()

    assert entry.meta.slot == "slot_20240101_120000_000000"
    assert entry.meta.name == entry.meta.slot
    assert service.load_raw_slot(entry.meta.slot) is not None


def test_quick_save_and_quick_load(service) -> None:
    navigator, saves = _session(service)
    assert saves.quick_load() is False

    navigator.choose_index(0)
    saves.quick_save()
    navigator.restart()

    assert saves.quick_load() is True
    assert navigator.current_node.id == "ch1_b"
    assert service.load_raw_slot(QUICK_SAVE_SLOT).meta.name == "QuickSave"
    assert saves.current_slot is None


def test_load_missing_or_blank_slot(service) -> None:
    navigator, saves = _session(service)

    assert saves.load_slot("") is False
    assert saves.load_slot(None) is False
    assert saves.load_slot("nope") is False
    assert navigator.current_node.id == "ch1_a"


def test_delete_slot_clears_current_slot(service) -> None:
    _, saves = _session(service)
    saves.save_to_slot("alpha")

    saves.delete_slot("ALPHA")

    assert saves.current_slot is None
    saves.delete_slot("alpha")
    assert saves.list_slots() == []


def test_list_slots_newest_first(service) -> None:
    _, saves = _session(service)
    saves.save_to_slot("first")
    saves.save_to_slot("second")

    assert [item.slot for item in saves.list_slots()] == ["second", "first"]


def test_storage_failures_become_save_load_errors(service, monkeypatch) -> None:
    _, saves = _session(service)

    def broken(*args, **kwargs):
        raise StorageError("disk unavailable")

    monkeypatch.setattr(service, "save_raw_slot", broken)
    monkeypatch.setattr(service, "load_raw_slot", broken)
    monkeypatch.setattr(service, "list_save_slots", broken)

    with pytest.raises(SaveLoadError):
        saves.save_to_slot("x")
    with pytest.raises(SaveLoadError):
        saves.quick_save()
    with pytest.raises(SaveLoadError):
        saves.load_slot("x")
    assert saves.list_slots() == []
    assert saves.current_slot is None
