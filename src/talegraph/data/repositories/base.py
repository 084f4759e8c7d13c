"""Storage contract shared by the flat-file and SQLite backends."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Sequence, Tuple

from talegraph.core.logger import get_logger
from talegraph.data.errors import DataError
from talegraph.data.serialization import is_save_entry_payload, save_entry_from_dict
from talegraph.domain.models import Chapter, StoryNode
from talegraph.domain.save_entry import SaveEntry, SaveEntryMetadata, utc_now
from talegraph.domain.state import GameState
from talegraph.services.script_parser import ScriptParser

logger = get_logger(__name__)

DEFAULT_SLOT = "default"

Clock = Callable[[], datetime]


def normalize_slot(slot: str | None) -> str:
    """Return the storage key for ``slot``; blank slots map to ``default``.

    Path separators become underscores so every key names a single file.
    """
    if slot is None or not slot.strip():
        return DEFAULT_SLOT
    return slot.strip().replace("/", "_").replace("\\", "_")


def repair_node_id(node: StoryNode, existing_chapter_id: str | None) -> str:
    """Namespace ``node.id`` with its chapter when the id is taken by another chapter.

    Rule: if a node with the same id is already stored under a different
    chapter, and the id does not already start with ``<chapter_id>_``, the
    id becomes ``<chapter_id>_<id>``. The node is updated in place and the
    final id is returned.
    """
    if existing_chapter_id is None or not node.chapter_id:
        return node.id
    if existing_chapter_id.lower() == node.chapter_id.lower():
        return node.id
    prefix = f"{node.chapter_id}_"
    if not node.id.startswith(prefix):
        logger.info(
            "Node id %s already belongs to chapter %s; storing as %s%s",
            node.id,
            existing_chapter_id,
            prefix,
            node.id,
        )
        node.id = f"{prefix}{node.id}"
    return node.id


def metadata_from_payload(payload: object, storage_key: str) -> SaveEntryMetadata | None:
    """Project a stored slot payload for listing; bare game states and unnamed slots yield None."""
    if not is_save_entry_payload(payload):
        return None
    entry = save_entry_from_dict(payload)
    return SaveEntryMetadata.from_entry(entry, storage_key)


def sort_slot_metadata(items: Sequence[SaveEntryMetadata]) -> List[SaveEntryMetadata]:
    return sorted(items, key=lambda item: item.updated_at, reverse=True)


class StoryDataService:
    """Chapter, node and save slot storage.

    Subclasses implement the primitive operations; import/export and the id
    rules live here so both backends behave the same.
    """

    def __init__(self, *, parser: ScriptParser | None = None, clock: Clock | None = None) -> None:
        self._parser = parser or ScriptParser()
        self._clock = clock or utc_now

    # Lifecycle -------------------------------------------------------------

    def initialize(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release resources and write anything still pending."""

    def __enter__(self) -> "StoryDataService":
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Chapters --------------------------------------------------------------

    def list_chapters(self) -> List[Chapter]:
        raise NotImplementedError

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        raise NotImplementedError

    def save_chapter(self, chapter: Chapter) -> None:
        raise NotImplementedError

    def delete_chapter(self, chapter_id: str) -> None:
        raise NotImplementedError

    # Nodes -----------------------------------------------------------------

    def list_nodes(self, chapter_id: str) -> List[StoryNode]:
        raise NotImplementedError

    def get_node(self, node_id: str) -> StoryNode | None:
        raise NotImplementedError

    def save_node(self, node: StoryNode, flush: bool = False) -> str:
        raise NotImplementedError

    def delete_node(self, node_id: str) -> None:
        raise NotImplementedError

    # Text import/export ----------------------------------------------------

    def import_from_text(self, text: str, chapter_id: str) -> Tuple[Chapter, List[StoryNode]]:
        """Parse ``text`` into ``chapter_id`` and store chapter and nodes together."""
        chapter, nodes = self._parse_for_import(text, chapter_id)
        self._replace_chapter(chapter, nodes)
        logger.info("Imported chapter %s (%s) with %d nodes", chapter.id, chapter.title, len(nodes))
        return chapter, nodes

    def export_to_text(self, chapter_id: str) -> str:
        return "\n\n".join(node.text for node in self.list_nodes(chapter_id))

    def _parse_for_import(self, text: str, chapter_id: str) -> Tuple[Chapter, List[StoryNode]]:
        chapter, nodes = self._parser.parse_script(text, chapter_id)
        if not self._parser.has_node_markup(text):
            nodes = self._parser.parse_simple_text(text, chapter_id)
        chapter.id = chapter_id
        for node in nodes:
            node.chapter_id = chapter_id
        existing = self.get_chapter(chapter_id)
        if existing is not None:
            chapter.order_index = existing.order_index
            chapter.description = existing.description
        else:
            chapters = self.list_chapters()
            chapter.order_index = max((item.order_index for item in chapters), default=-1) + 1
        return chapter, nodes

    def _replace_chapter(self, chapter: Chapter, nodes: List[StoryNode]) -> None:
        """Atomically store ``chapter`` and make ``nodes`` its only nodes."""
        raise NotImplementedError

    # Save slots ------------------------------------------------------------

    def save_game_state(self, slot: str, state: GameState) -> None:
        raise NotImplementedError

    def load_game_state(self, slot: str) -> GameState | None:
        raise NotImplementedError

    def save_raw_slot(self, slot: str, entry: SaveEntry) -> None:
        raise NotImplementedError

    def load_raw_slot(self, slot: str) -> SaveEntry | None:
        raise NotImplementedError

    def list_save_slots(self) -> List[SaveEntryMetadata]:
        raise NotImplementedError

    def delete_save_slot(self, slot: str) -> None:
        raise NotImplementedError

    def _collect_slot_metadata(self, rows: Sequence[Tuple[str, object]]) -> List[SaveEntryMetadata]:
        items: List[SaveEntryMetadata] = []
        for storage_key, payload in rows:
            try:
                metadata = metadata_from_payload(payload, storage_key)
            except DataError as exc:
                logger.warning("Skipping unreadable save slot %s: %s", storage_key, exc)
                continue
            if metadata is not None:
                items.append(metadata)
        return sort_slot_metadata(items)
