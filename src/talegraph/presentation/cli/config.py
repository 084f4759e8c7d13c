"""CLI configuration helpers for options persistence."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping

_BACKENDS = ("json", "sqlite")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_DEFAULT_BACKEND = "json"
_DEFAULT_LOG_LEVEL = "WARNING"
_DEFAULT_DEBOUNCE_MS = 300
_MAX_DEBOUNCE_MS = 10_000

ENV_BACKEND = "TALEGRAPH_BACKEND"
ENV_DATA_DIR = "TALEGRAPH_DATA_DIR"
ENV_DEBUG = "TALEGRAPH_DEBUG"


def get_user_data_dir() -> Path:
    """Return the per-user data directory."""
    if os.name == "nt":
        base = os.environ.get("APPDATA")
        if base:
            return Path(base) / "Talegraph"
        return Path.home() / "Talegraph"
    return Path.home() / ".config" / "talegraph"


def get_default_config_path() -> Path:
    """Return the default per-user config path."""
    return get_user_data_dir() / "config.json"


def default_config() -> Dict[str, Any]:
    return {
        "backend": _DEFAULT_BACKEND,
        "data_dir": None,
        "log_level": _DEFAULT_LOG_LEVEL,
        "save_debounce_ms": _DEFAULT_DEBOUNCE_MS,
    }


def _normalize_backend(value: object) -> str:
    if isinstance(value, str) and value.strip().lower() in _BACKENDS:
        return value.strip().lower()
    return _DEFAULT_BACKEND


def _normalize_data_dir(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _normalize_log_level(value: object) -> str:
    if isinstance(value, str) and value.strip().upper() in _LOG_LEVELS:
        return value.strip().upper()
    return _DEFAULT_LOG_LEVEL


def _normalize_debounce(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return _DEFAULT_DEBOUNCE_MS
    if value < 0 or value > _MAX_DEBOUNCE_MS:
        return _DEFAULT_DEBOUNCE_MS
    return value


def normalize_config(raw: Mapping[str, object]) -> Dict[str, Any]:
    return {
        "backend": _normalize_backend(raw.get("backend")),
        "data_dir": _normalize_data_dir(raw.get("data_dir")),
        "log_level": _normalize_log_level(raw.get("log_level")),
        "save_debounce_ms": _normalize_debounce(raw.get("save_debounce_ms")),
    }


def load_config(path: Path | None = None) -> Dict[str, Any]:
    """Load config from disk or return defaults."""
    config_path = path or get_default_config_path()
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default_config()
    if not isinstance(raw, dict):
        return default_config()
    return normalize_config(raw)


def save_config(config: Mapping[str, object], path: Path | None = None) -> None:
    """Persist config to disk."""
    config_path = path or get_default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    payload = normalize_config(config)
    config_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")


def apply_env_overrides(config: Mapping[str, object], environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """Return ``config`` with TALEGRAPH_* environment variables applied."""
    env = os.environ if environ is None else environ
    merged = dict(config)
    if env.get(ENV_BACKEND):
        merged["backend"] = env[ENV_BACKEND]
    if env.get(ENV_DATA_DIR):
        merged["data_dir"] = env[ENV_DATA_DIR]
    if env.get(ENV_DEBUG) == "1":
        merged["log_level"] = "DEBUG"
    return normalize_config(merged)
