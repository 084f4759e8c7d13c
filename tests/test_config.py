import json
from pathlib import Path

from talegraph.presentation.cli.config import (
    apply_env_overrides,
    default_config,
    get_default_config_path,
    load_config,
    normalize_config,
    save_config,
)


def test_missing_config_returns_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "absent.json") == default_config()


def test_unreadable_config_returns_defaults(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{nope", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")

    assert load_config(broken) == default_config()
    assert load_config(listing) == default_config()


def test_invalid_values_fall_back_per_key() -> None:
    config = normalize_config(
        {"backend": "XML", "data_dir": "  ", "log_level": "info", "save_debounce_ms": 50_000}
    )

    assert config == {
        "backend": "json",
        "data_dir": None,
        "log_level": "INFO",
        "save_debounce_ms": 300,
    }


def test_save_and_load_config(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"

    save_config({"backend": "SQLite", "data_dir": "/stories", "save_debounce_ms": 0}, path)

    assert json.loads(path.read_text(encoding="utf-8"))["backend"] == "sqlite"
    assert load_config(path) == {
        "backend": "sqlite",
        "data_dir": "/stories",
        "log_level": "WARNING",
        "save_debounce_ms": 0,
    }


def test_environment_overrides() -> None:
    environ = {"TALEGRAPH_BACKEND": "sqlite", "TALEGRAPH_DATA_DIR": "/tmp/tales", "TALEGRAPH_DEBUG": "1"}

    config = apply_env_overrides(default_config(), environ)

    assert config["backend"] == "sqlite"
    assert config["data_dir"] == "/tmp/tales"
    assert config["log_level"] == "DEBUG"
    assert apply_env_overrides(default_config(), {"TALEGRAPH_DEBUG": "0"}) == default_config()


def test_default_config_path_is_in_user_dir() -> None:
    assert get_default_config_path().name == "config.json"
