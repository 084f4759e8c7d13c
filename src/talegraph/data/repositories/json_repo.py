"""Flat-file story storage with debounced writes."""
from __future__ import annotations

import copy
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Tuple

from talegraph.core.logger import get_logger
from talegraph.data import paths
from talegraph.data.errors import DataLoadError, DataValidationError, StorageError
from talegraph.data.json_loader import dump_json, load_json, write_text_atomic
from talegraph.data.repositories.base import (
    Clock,
    StoryDataService,
    normalize_slot,
    repair_node_id,
)
from talegraph.data.serialization import (
    chapter_from_dict,
    chapter_to_dict,
    game_state_from_dict,
    game_state_to_dict,
    is_save_entry_payload,
    node_from_dict,
    node_to_dict,
    save_entry_from_dict,
    save_entry_to_dict,
)
from talegraph.domain.models import Chapter, StoryNode
from talegraph.domain.save_entry import SaveEntry, SaveEntryMetadata
from talegraph.domain.state import GameState
from talegraph.services.script_parser import ScriptParser

logger = get_logger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3
MIN_IMMEDIATE_FLUSH_INTERVAL = 0.15
SLOT_FILE_PREFIX = "game_state_"


class JsonStoryDataService(StoryDataService):
    """Keeps every chapter and node in memory and mirrors them to one JSON document.

    Mutations schedule a flush after a quiet period; each new mutation
    replaces the pending flush, so a burst of edits costs one write.
    ``save_node(..., flush=True)`` writes immediately unless the previous
    write finished less than ``min_flush_interval`` seconds ago, in which
    case a debounced flush is scheduled instead.
    """

    def __init__(
        self,
        data_dir: Path | str | None = None,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        min_flush_interval: float = MIN_IMMEDIATE_FLUSH_INTERVAL,
        mirror_path: Path | str | None = None,
        parser: ScriptParser | None = None,
        clock: Clock | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(parser=parser, clock=clock)
        self._data_dir = paths.get_stories_path(data_dir)
        self._story_file = self._data_dir / paths.STORY_FILE_NAME
        self._saves_dir = self._data_dir / paths.SAVES_DIR_NAME
        self._mirror_path = Path(mirror_path) if mirror_path is not None else None
        self._debounce_seconds = debounce_seconds
        self._min_flush_interval = min_flush_interval
        self._monotonic = monotonic

        self._chapters: Dict[str, Chapter] = {}
        self._nodes: Dict[str, StoryNode] = {}
        self._data_lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._slot_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._dirty = False
        self._last_flush_at: float | None = None
        self._write_count = 0
        self._initialized = False

    @property
    def story_file(self) -> Path:
        return self._story_file

    @property
    def mirror_path(self) -> Path | None:
        return self._mirror_path

    @property
    def write_count(self) -> int:
        """Number of successful writes of the story document."""
        return self._write_count

    # Lifecycle -------------------------------------------------------------

    def initialize(self) -> None:
        if self._initialized:
            return
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Unable to create data directory {self._data_dir}: {exc}") from exc
        if not self._story_file.exists():
            logger.info("No story file yet at %s", self._story_file)
            self._initialized = True
            return
        raw = load_json(self._story_file)
        chapters, nodes = self._decode_document(raw)
        with self._data_lock:
            self._chapters = chapters
            self._nodes = nodes
            self._initialized = True
        logger.info("Loaded %d chapters and %d nodes from %s", len(chapters), len(nodes), self._story_file)

    def close(self) -> None:
        self.flush_pending()

    def flush_pending(self) -> None:
        """Cancel any scheduled flush and write now if there are unsaved changes."""
        with self._timer_lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._dirty:
            self._flush(force=True)

    # Chapters --------------------------------------------------------------

    def list_chapters(self) -> List[Chapter]:
        with self._data_lock:
            chapters = [copy.deepcopy(chapter) for chapter in self._chapters.values()]
        return sorted(chapters, key=lambda chapter: chapter.order_index)

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        with self._data_lock:
            return copy.deepcopy(self._chapters.get(chapter_id))

    def save_chapter(self, chapter: Chapter) -> None:
        with self._data_lock:
            self._chapters[chapter.id] = copy.deepcopy(chapter)
            self._dirty = True
        self._schedule_flush()

    def delete_chapter(self, chapter_id: str) -> None:
        with self._data_lock:
            self._chapters.pop(chapter_id, None)
            for node_id in [key for key, node in self._nodes.items() if node.chapter_id == chapter_id]:
                del self._nodes[node_id]
            self._dirty = True
        self._schedule_flush()

    # Nodes -----------------------------------------------------------------

    def list_nodes(self, chapter_id: str) -> List[StoryNode]:
        with self._data_lock:
            nodes = [copy.deepcopy(node) for node in self._nodes.values() if node.chapter_id == chapter_id]
        return sorted(nodes, key=lambda node: node.order_index)

    def get_node(self, node_id: str) -> StoryNode | None:
        with self._data_lock:
            return copy.deepcopy(self._nodes.get(node_id))

    def save_node(self, node: StoryNode, flush: bool = False) -> str:
        with self._data_lock:
            existing = self._nodes.get(node.id)
            repair_node_id(node, existing.chapter_id if existing is not None else None)
            self._nodes[node.id] = copy.deepcopy(node)
            self._dirty = True
        if flush:
            self._flush()
        else:
            self._schedule_flush()
        return node.id

    def delete_node(self, node_id: str) -> None:
        with self._data_lock:
            self._nodes.pop(node_id, None)
            self._dirty = True
        self._schedule_flush()

    def _replace_chapter(self, chapter: Chapter, nodes: List[StoryNode]) -> None:
        with self._data_lock:
            previous_chapters = dict(self._chapters)
            previous_nodes = dict(self._nodes)
            self._chapters[chapter.id] = copy.deepcopy(chapter)
            for node_id in [key for key, node in self._nodes.items() if node.chapter_id == chapter.id]:
                del self._nodes[node_id]
            for node in nodes:
                existing = self._nodes.get(node.id)
                repair_node_id(node, existing.chapter_id if existing is not None else None)
                self._nodes[node.id] = copy.deepcopy(node)
            self._dirty = True
        try:
            self._flush(force=True)
        except StorageError:
            with self._data_lock:
                self._chapters = previous_chapters
                self._nodes = previous_nodes
            raise

    # Flushing --------------------------------------------------------------

    def _schedule_flush(self, delay: float | None = None) -> None:
        delay = self._debounce_seconds if delay is None else delay
        with self._timer_lock:
            self._generation += 1
            generation = self._generation
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(delay, self._run_scheduled_flush, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _run_scheduled_flush(self, generation: int) -> None:
        with self._timer_lock:
            if generation != self._generation:
                return
            self._timer = None
        try:
            self._flush(force=True)
        except StorageError:
            logger.exception("Scheduled flush of %s failed; changes stay pending", self._story_file)

    def _flush(self, *, force: bool = False) -> bool:
        """Write the document; return False when an immediate write was throttled."""
        with self._flush_lock:
            now = self._monotonic()
            if (
                not force
                and self._last_flush_at is not None
                and now - self._last_flush_at < self._min_flush_interval
            ):
                logger.debug("Skipping rapid duplicate flush of %s", self._story_file)
                self._schedule_flush()
                return False
            with self._data_lock:
                text = dump_json(self._encode_document())
                self._dirty = False
            try:
                write_text_atomic(self._story_file, text)
            except StorageError:
                self._dirty = True
                raise
            self._last_flush_at = self._monotonic()
            self._write_count += 1
            logger.debug("Wrote %s (%d bytes)", self._story_file, len(text.encode("utf-8")))
            self._write_mirror(text)
            return True

    def _write_mirror(self, text: str) -> None:
        if self._mirror_path is None or self._mirror_path == self._story_file:
            return
        try:
            write_text_atomic(self._mirror_path, text)
        except StorageError as exc:
            logger.warning("Failed to write mirror copy %s: %s", self._mirror_path, exc)

    def _encode_document(self) -> dict:
        return {
            "chapters": [chapter_to_dict(chapter) for chapter in self._chapters.values()],
            "nodes": [node_to_dict(node) for node in self._nodes.values()],
        }

    @staticmethod
    def _decode_document(raw: object) -> Tuple[Dict[str, Chapter], Dict[str, StoryNode]]:
        if not isinstance(raw, dict):
            raise DataValidationError("Story document must be an object with 'chapters' and 'nodes'.")
        chapters_raw = raw.get("chapters") or []
        nodes_raw = raw.get("nodes") or []
        if not isinstance(chapters_raw, list) or not isinstance(nodes_raw, list):
            raise DataValidationError("Story document 'chapters' and 'nodes' must be lists.")
        chapters = {chapter.id: chapter for chapter in map(chapter_from_dict, chapters_raw)}
        nodes = {node.id: node for node in map(node_from_dict, nodes_raw)}
        return chapters, nodes

    # Save slots ------------------------------------------------------------

    def _slot_path(self, slot: str) -> Path:
        return self._saves_dir / f"{SLOT_FILE_PREFIX}{normalize_slot(slot)}.json"

    def _write_slot(self, slot: str, payload: dict) -> None:
        with self._slot_lock:
            write_text_atomic(self._slot_path(slot), dump_json(payload))

    def _read_slot(self, slot: str) -> object | None:
        path = self._slot_path(slot)
        if not path.exists():
            return None
        try:
            if not path.read_text(encoding="utf-8").strip():
                return None
        except OSError as exc:
            raise StorageError(f"Unable to read save slot {path}: {exc}") from exc
        return load_json(path)

    def save_game_state(self, slot: str, state: GameState) -> None:
        self._write_slot(slot, game_state_to_dict(state))

    def load_game_state(self, slot: str) -> GameState | None:
        raw = self._read_slot(slot)
        if raw is None:
            return None
        if is_save_entry_payload(raw):
            return save_entry_from_dict(raw).state
        return game_state_from_dict(raw)

    def save_raw_slot(self, slot: str, entry: SaveEntry) -> None:
        key = normalize_slot(slot)
        payload = save_entry_to_dict(entry)
        payload["meta"]["slot"] = key
        payload["meta"]["updated_at"] = self._clock().isoformat()
        self._write_slot(key, payload)
        logger.info("Saved slot %s", key)

    def load_raw_slot(self, slot: str) -> SaveEntry | None:
        raw = self._read_slot(slot)
        if raw is None or not is_save_entry_payload(raw):
            return None
        return save_entry_from_dict(raw)

    def list_save_slots(self) -> List[SaveEntryMetadata]:
        if not self._saves_dir.is_dir():
            return []
        rows: List[Tuple[str, object]] = []
        for path in sorted(self._saves_dir.glob(f"{SLOT_FILE_PREFIX}*.json")):
            storage_key = path.stem[len(SLOT_FILE_PREFIX) :]
            try:
                rows.append((storage_key, load_json(path)))
            except DataLoadError as exc:
                logger.warning("Skipping unreadable save slot %s: %s", path, exc)
        return self._collect_slot_metadata(rows)

    def delete_save_slot(self, slot: str) -> None:
        path = self._slot_path(slot)
        with self._slot_lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                raise StorageError(f"Unable to delete save slot {path}: {exc}") from exc
