"""Console entry point: script import/export, listings, validation and play."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, List, Literal, Sequence

from talegraph.core.logger import get_logger, setup_logging
from talegraph.data.errors import DataError
from talegraph.data.repositories import BACKENDS, StoryDataService, create_data_service
from talegraph.services import (
    EditorError,
    Navigator,
    SaveLoadError,
    SaveManager,
    StoryEditorService,
    StoryNodeView,
    format_issue,
    validate_chapter_graph,
)

from .config import apply_env_overrides, load_config

logger = get_logger(__name__)

PlayAction = Literal["next", "prev", "chapter", "restart", "save", "load", "quit"]

_PLAY_ACTIONS: Dict[str, PlayAction] = {
    "n": "next",
    "p": "prev",
    "c": "chapter",
    "r": "restart",
    "s": "save",
    "l": "load",
    "q": "quit",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="talegraph", description="Branching story engine console.")
    parser.add_argument("--backend", choices=BACKENDS, help="Storage backend (default from config).")
    parser.add_argument("--data-dir", help="Directory holding story data and save slots.")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...).")
    parser.add_argument("--editor", action="store_true", help="Launch in editor mode.")
    parser.add_argument("--config", type=Path, help="Path to an alternate config.json.")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("play", help="Play the story in the terminal (default).")

    import_parser = subparsers.add_parser("import", help="Import a story script as a chapter.")
    import_parser.add_argument("file", type=Path)
    import_parser.add_argument("--chapter", help="Chapter id to import into (default: next free id).")

    export_parser = subparsers.add_parser("export", help="Print a chapter's text.")
    export_parser.add_argument("chapter_id")

    subparsers.add_parser("chapters", help="List chapters.")
    subparsers.add_parser("slots", help="List save slots.")

    validate_parser = subparsers.add_parser("validate", help="Check a chapter's story graph.")
    validate_parser.add_argument("chapter_id")
    return parser


def resolve_settings(args: argparse.Namespace, environ: Dict[str, str] | None = None) -> Dict[str, Any]:
    """Merge config file, environment and command line; the command line wins."""
    settings = apply_env_overrides(load_config(args.config), environ)
    if args.backend:
        settings["backend"] = args.backend
    if args.data_dir:
        settings["data_dir"] = args.data_dir
    if args.log_level:
        settings["log_level"] = args.log_level.upper()
    return settings


def build_data_service(settings: Dict[str, Any]) -> StoryDataService:
    options: Dict[str, Any] = {}
    if settings["backend"] == "json":
        options["debounce_seconds"] = settings["save_debounce_ms"] / 1000
    return create_data_service(settings["backend"], settings["data_dir"], **options)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the console; return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = resolve_settings(args)
    setup_logging(settings["log_level"])
    if args.editor:
        print("Editor mode requested: use the import, export, chapters and validate commands.")

    service = build_data_service(settings)
    try:
        service.initialize()
        command = args.command or "play"
        if command == "import":
            return _cmd_import(service, args.file, args.chapter)
        if command == "export":
            print(service.export_to_text(args.chapter_id))
            return 0
        if command == "chapters":
            return _cmd_chapters(service)
        if command == "slots":
            return _cmd_slots(service)
        if command == "validate":
            return _cmd_validate(service, args.chapter_id)
        return _run_play_loop(service)
    except (DataError, EditorError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}")
        return 1
    finally:
        service.close()


def _cmd_import(service: StoryDataService, file: Path, chapter_id: str | None) -> int:
    try:
        text = file.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Unable to read {file}: {exc}")
        return 1
    if chapter_id:
        chapter, nodes = service.import_from_text(text, chapter_id)
    else:
        chapter, nodes = StoryEditorService(service).import_script(text)
    print(f"Imported chapter {chapter.id} ({chapter.title}) with {len(nodes)} nodes.")
    return 0


def _cmd_chapters(service: StoryDataService) -> int:
    chapters = service.list_chapters()
    if not chapters:
        print("No chapters.")
        return 0
    for chapter in chapters:
        count = len(service.list_nodes(chapter.id))
        print(f"{chapter.order_index:>3}. {chapter.id:<16} {chapter.title} ({count} nodes)")
    return 0


def _cmd_slots(service: StoryDataService) -> int:
    slots = service.list_save_slots()
    if not slots:
        print("No save slots.")
        return 0
    for item in slots:
        where = f" @ {item.short_description}" if item.short_description else ""
        print(f"{item.slot:<28} {item.name}  {item.updated_at:%Y-%m-%d %H:%M:%S}{where}")
    return 0


def _cmd_validate(service: StoryDataService, chapter_id: str) -> int:
    nodes = service.list_nodes(chapter_id)
    if not nodes:
        print(f"Chapter {chapter_id} has no nodes.")
        return 1
    known: List[str] = []
    for chapter in service.list_chapters():
        if chapter.id != chapter_id:
            known.extend(node.id for node in service.list_nodes(chapter.id))
    issues = validate_chapter_graph(nodes, known_node_ids=known)
    for issue in issues:
        print(format_issue(issue))
    errors = sum(1 for issue in issues if issue.severity == "ERROR")
    print(f"{len(nodes)} nodes checked, {errors} errors, {len(issues) - errors} warnings.")
    return 1 if errors else 0


def _run_play_loop(service: StoryDataService) -> int:
    navigator = Navigator(service)
    navigator.initialize()
    saves = SaveManager(service, navigator)
    if navigator.current_node is None:
        print("No story to play. Import a script first.")
        return 0
    while True:
        view = navigator.get_current_node_view()
        if view is None:
            print("This chapter is empty.")
            return 0
        _render_node_view(view)
        if view.choices:
            index = _prompt_choice(len(view.choices))
            if index is not None:
                navigator.choose_index(index)
                continue
            action: PlayAction = "quit"
        else:
            action = _prompt_play_action(navigator)
        if action == "quit":
            print("Goodbye!")
            return 0
        _apply_play_action(action, navigator, saves)


def _render_node_view(view: StoryNodeView) -> None:
    print()
    print(f"[{view.node_id}]")
    if view.speaker:
        print(f"{view.speaker}:")
    print(view.text)
    if view.choices:
        print("Choices:")
        for idx, label in enumerate(view.choices, start=1):
            print(f"  {idx}. {label}")


def _prompt_choice(choice_count: int) -> int | None:
    """Return the zero-based choice index, or None when the player quits."""
    while True:
        try:
            raw = input("Select an option (q to quit): ").strip()
        except EOFError:
            return None
        if raw.lower() == "q":
            return None
        try:
            index = int(raw) - 1
        except ValueError:
            print("Please enter a number.")
            continue
        if 0 <= index < choice_count:
            return index
        print(f"Please enter a value between 1 and {choice_count}.")


def _available_actions(navigator: Navigator) -> List[tuple[str, str]]:
    options: List[tuple[str, str]] = []
    if navigator.can_next():
        options.append(("n", "Next"))
    if navigator.can_prev():
        options.append(("p", "Back"))
    if navigator.can_go_to_next_chapter():
        options.append(("c", "Next chapter"))
    if navigator.can_restart():
        options.append(("r", "Restart"))
    options.extend([("s", "Quick save"), ("l", "Quick load"), ("q", "Quit")])
    return options


def _prompt_play_action(navigator: Navigator) -> PlayAction:
    options = _available_actions(navigator)
    keys = {key for key, _ in options}
    while True:
        print("  ".join(f"[{key}] {label}" for key, label in options))
        try:
            raw = input("Action: ").strip().lower() or ("n" if "n" in keys else "")
        except EOFError:
            return "quit"
        if raw in keys:
            return _PLAY_ACTIONS[raw]
        print("Invalid selection.")


def _apply_play_action(action: PlayAction, navigator: Navigator, saves: SaveManager) -> None:
    if action == "next":
        navigator.next()
    elif action == "prev":
        navigator.prev()
    elif action == "chapter":
        navigator.go_to_next_chapter()
    elif action == "restart":
        navigator.restart()
    elif action == "save":
        try:
            saves.quick_save()
            print("Saved.")
        except SaveLoadError as exc:
            print(f"Save failed: {exc}")
    elif action == "load":
        try:
            if not saves.quick_load():
                print("No quick save yet.")
        except SaveLoadError as exc:
            print(f"Load failed: {exc}")
