from pathlib import Path

import pytest

from talegraph.data import paths
from talegraph.presentation.cli import app
from talegraph.presentation.cli.app import build_parser, main, resolve_settings

from tests.helpers.story_builders import INTRO_SCRIPT


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch) -> None:
    for name in ("TALEGRAPH_BACKEND", "TALEGRAPH_DATA_DIR", "TALEGRAPH_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(paths, "get_dev_mirror_path", lambda: None)


def _run(tmp_path: Path, *argv: str) -> int:
    base = ["--data-dir", str(tmp_path / "data"), "--config", str(tmp_path / "config.json")]
    return main(base + list(argv))


def _script(tmp_path: Path, text: str = INTRO_SCRIPT) -> Path:
    path = tmp_path / "intro.md"
    path.write_text(text, encoding="utf-8")
    return path


def _feed_input(monkeypatch, answers) -> None:
    replies = iter(answers)

    def fake_input(_prompt: str = "") -> str:
        try:
            return next(replies)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)


def test_command_line_overrides_config(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text('{"backend": "sqlite", "log_level": "ERROR"}', encoding="utf-8")
    args = build_parser().parse_args(["--config", str(config_path), "--log-level", "debug", "chapters"])

    settings = resolve_settings(args, environ={})

    assert settings["backend"] == "sqlite"
    assert settings["log_level"] == "DEBUG"
    assert args.command == "chapters"


@pytest.mark.parametrize("backend", ["json", "sqlite"])
def test_import_then_list_chapters(tmp_path: Path, capsys, backend: str) -> None:
    assert _run(tmp_path, "--backend", backend, "import", str(_script(tmp_path))) == 0
    assert "Imported chapter chapter_001 (Intro) with 2 nodes." in capsys.readouterr().out

    assert _run(tmp_path, "--backend", backend, "chapters") == 0
    assert "chapter_001" in capsys.readouterr().out


def test_import_into_named_chapter_and_export(tmp_path: Path, capsys) -> None:
    _run(tmp_path, "import", str(_script(tmp_path)), "--chapter", "ch1")
    capsys.readouterr()

    assert _run(tmp_path, "export", "ch1") == 0
    assert capsys.readouterr().out == "Hello\n\nWorld\n"


def test_import_missing_file(tmp_path: Path, capsys) -> None:
    assert _run(tmp_path, "import", str(tmp_path / "missing.md")) == 1
    assert "Unable to read" in capsys.readouterr().out


def test_validate_reports_counts(tmp_path: Path, capsys) -> None:
    _run(tmp_path, "import", str(_script(tmp_path)), "--chapter", "ch1")
    capsys.readouterr()

    assert _run(tmp_path, "validate", "ch1") == 0
    assert "2 nodes checked, 0 errors, 0 warnings." in capsys.readouterr().out

    assert _run(tmp_path, "validate", "nope") == 1


def test_validate_flags_broken_links(tmp_path: Path, capsys) -> None:
    _run(tmp_path, "import", str(_script(tmp_path, "## [a]\nStart\n→ Go → [ghost]")), "--chapter", "ch1")
    capsys.readouterr()

    assert _run(tmp_path, "validate", "ch1") == 1
    assert "MISSING_NODE_REF" in capsys.readouterr().out


def test_empty_listings(tmp_path: Path, capsys) -> None:
    assert _run(tmp_path, "chapters") == 0
    assert _run(tmp_path, "slots") == 0
    out = capsys.readouterr().out
    assert "No chapters." in out
    assert "No save slots." in out


def test_corrupt_story_file_is_reported(tmp_path: Path, capsys) -> None:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "story_data.json").write_text("{broken", encoding="utf-8")

    assert _run(tmp_path, "chapters") == 1
    assert capsys.readouterr().out.startswith("Error:")


def test_play_without_story(tmp_path: Path, capsys) -> None:
    assert _run(tmp_path) == 0
    assert "No story to play. Import a script first." in capsys.readouterr().out


def test_play_choose_save_and_quit(tmp_path: Path, capsys, monkeypatch) -> None:
    _run(tmp_path, "import", str(_script(tmp_path)), "--chapter", "ch1")
    _feed_input(monkeypatch, ["x", "3", "1", "z", "s", "q"])

    assert _run(tmp_path, "play") == 0

    out = capsys.readouterr().out
    assert "Hello" in out
    assert "1. Go" in out
    assert "Please enter a number." in out
    assert "Please enter a value between 1 and 1." in out
    assert "World" in out
    assert "Invalid selection." in out
    assert "Saved." in out
    assert "Goodbye!" in out

    assert _run(tmp_path, "slots") == 0
    assert "quicksave" in capsys.readouterr().out


def test_play_quick_load_without_save(tmp_path: Path, capsys, monkeypatch) -> None:
    _run(tmp_path, "import", str(_script(tmp_path, "## [a]\nOne\n## [b]\nTwo")), "--chapter", "ch1")
    _feed_input(monkeypatch, ["l", "", "p", "q"])

    assert _run(tmp_path, "play") == 0

    out = capsys.readouterr().out
    assert "No quick save yet." in out
    assert out.count("[ch1_a]") == 3
    assert "[ch1_b]" in out


def test_quit_from_choice_prompt(tmp_path: Path, capsys, monkeypatch) -> None:
    _run(tmp_path, "import", str(_script(tmp_path)), "--chapter", "ch1")
    _feed_input(monkeypatch, ["Q"])

    assert _run(tmp_path, "play") == 0

    out = capsys.readouterr().out
    assert "1. Go" in out
    assert "World" not in out
    assert "Goodbye!" in out


def test_end_of_input_ends_play(tmp_path: Path, capsys, monkeypatch) -> None:
    _run(tmp_path, "import", str(_script(tmp_path)), "--chapter", "ch1")
    _feed_input(monkeypatch, ["1"])

    assert _run(tmp_path, "play") == 0

    out = capsys.readouterr().out
    assert "World" in out
    assert out.rstrip().endswith("Goodbye!")


def test_import_writes_mirror_copy(tmp_path: Path, monkeypatch) -> None:
    mirror = tmp_path / "project" / "story_data.json"
    monkeypatch.setattr(paths, "get_dev_mirror_path", lambda: mirror)

    assert _run(tmp_path, "import", str(_script(tmp_path)), "--chapter", "ch1") == 0

    stored = (tmp_path / "data" / "story_data.json").read_text(encoding="utf-8")
    assert mirror.read_text(encoding="utf-8") == stored


def test_editor_flag_prints_notice(tmp_path: Path, capsys) -> None:
    assert _run(tmp_path, "--editor", "chapters") == 0
    assert "Editor mode requested" in capsys.readouterr().out


def test_available_actions_follow_navigator_state() -> None:
    class StubNavigator:
        def can_next(self) -> bool:
            return True

        def can_prev(self) -> bool:
            return False

        def can_go_to_next_chapter(self) -> bool:
            return False

        def can_restart(self) -> bool:
            return True

    keys = [key for key, _ in app._available_actions(StubNavigator())]

    assert keys == ["n", "r", "s", "l", "q"]
