"""Authoring operations used by the story editor."""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Tuple

from talegraph.core.logger import get_logger
from talegraph.domain.models import Chapter, NodeType, StoryChoice, StoryNode
from talegraph.services.errors import EditorError
from talegraph.services.script_parser import make_node_id

if TYPE_CHECKING:
    from talegraph.data.repositories.base import StoryDataService

logger = get_logger(__name__)

DEFAULT_CHAPTER_TITLE = "新章节"
DEFAULT_NODE_TEXT = "新节点内容"
DEFAULT_CHOICE_TEXT = "新选项"
NODE_ID_MARKER = "_node_"


def make_chapter_id(number: int) -> str:
    return f"chapter_{number:03d}"


class StoryEditorService:
    """Chapter, node and choice editing on top of a storage backend."""

    def __init__(self, data_service: "StoryDataService") -> None:
        self._data_service = data_service

    # Chapters --------------------------------------------------------------

    def next_chapter_id(self) -> str:
        chapters = self._data_service.list_chapters()
        taken = {chapter.id for chapter in chapters}
        number = len(chapters) + 1
        while make_chapter_id(number) in taken:
            number += 1
        return make_chapter_id(number)

    def create_chapter(self, title: str | None = None) -> Chapter:
        chapters = self._data_service.list_chapters()
        chapter = Chapter(
            id=self.next_chapter_id(),
            title=title.strip() if title and title.strip() else DEFAULT_CHAPTER_TITLE,
            order_index=max((item.order_index for item in chapters), default=-1) + 1,
        )
        self._data_service.save_chapter(chapter)
        logger.info("Created chapter %s (%s)", chapter.id, chapter.title)
        return chapter

    def delete_chapter(self, chapter_id: str) -> None:
        self._data_service.delete_chapter(chapter_id)
        logger.info("Deleted chapter %s", chapter_id)

    def clean_empty_chapters(self) -> List[str]:
        """Delete every chapter without nodes and return the removed ids."""
        removed: List[str] = []
        for chapter in self._data_service.list_chapters():
            if not self._data_service.list_nodes(chapter.id):
                self._data_service.delete_chapter(chapter.id)
                removed.append(chapter.id)
        logger.info("Removed %d empty chapters", len(removed))
        return removed

    # Nodes -----------------------------------------------------------------

    def create_node(self, chapter_id: str, text: str = DEFAULT_NODE_TEXT) -> StoryNode:
        if self._data_service.get_chapter(chapter_id) is None:
            raise EditorError(f"Chapter '{chapter_id}' does not exist.")
        nodes = self._data_service.list_nodes(chapter_id)
        index = len(nodes)
        while self._data_service.get_node(make_node_id(chapter_id, index)) is not None:
            index += 1
        node = StoryNode(
            id=make_node_id(chapter_id, index),
            chapter_id=chapter_id,
            type=NodeType.NARRATION,
            text=text,
            order_index=max((item.order_index for item in nodes), default=-1) + 1,
        )
        self._data_service.save_node(node, flush=True)
        return node

    def delete_node(self, node_id: str) -> None:
        self._data_service.delete_node(node_id)

    def toggle_ending(self, node_id: str) -> StoryNode:
        node = self._require_node(node_id)
        node.type = NodeType.DIALOGUE if node.type is NodeType.ENDING else NodeType.ENDING
        self._data_service.save_node(node, flush=True)
        logger.debug("Node %s type set to %s", node.id, node.type.value)
        return node

    # Choices ---------------------------------------------------------------

    def add_choice(
        self,
        node_id: str,
        text: str = DEFAULT_CHOICE_TEXT,
        target_node_id: str = "",
    ) -> StoryChoice:
        node = self._require_node(node_id)
        choice = StoryChoice(text=text, target_node_id=target_node_id)
        node.choices.append(choice)
        self._data_service.save_node(node, flush=True)
        return choice

    def remove_choice(self, node_id: str, choice_id: str) -> bool:
        node = self._require_node(node_id)
        remaining = [choice for choice in node.choices if choice.id != choice_id]
        if len(remaining) == len(node.choices):
            return False
        node.choices = remaining
        self._data_service.save_node(node, flush=True)
        return True

    def normalize_choices(self, node: StoryNode) -> int:
        """Move node ids typed into ``target_chapter_id`` over to ``target_node_id``.

        Returns the number of corrected choices.
        """
        corrected = 0
        for choice in node.choices:
            if (choice.target_node_id or "").strip() or not (choice.target_chapter_id or "").strip():
                continue
            mistaken = choice.target_chapter_id.strip()
            target = self._data_service.get_node(mistaken)
            if target is not None:
                choice.target_node_id = target.id
                choice.target_chapter_id = target.chapter_id
                corrected += 1
            elif NODE_ID_MARKER in mistaken:
                choice.target_node_id = mistaken
                choice.target_chapter_id = mistaken.split(NODE_ID_MARKER, 1)[0]
                corrected += 1
        if corrected:
            logger.info("Corrected %d choice targets on node %s", corrected, node.id)
        return corrected

    # Bulk ------------------------------------------------------------------

    def save_chapter_nodes(self, chapter: Chapter, nodes: Iterable[StoryNode]) -> Tuple[int, int]:
        """Save every node with text, then the chapter; return (saved, skipped)."""
        saved = 0
        skipped = 0
        for node in nodes:
            if not node.text.strip():
                skipped += 1
                continue
            node.chapter_id = chapter.id
            self.normalize_choices(node)
            self._data_service.save_node(node)
            saved += 1
        self._data_service.save_chapter(chapter)
        logger.info("Saved chapter %s: %d nodes saved, %d skipped", chapter.id, saved, skipped)
        return saved, skipped

    def import_script(self, text: str) -> Tuple[Chapter, List[StoryNode]]:
        """Import ``text`` as a new chapter."""
        if not text.strip():
            raise EditorError("Nothing to import.")
        return self._data_service.import_from_text(text, self.next_chapter_id())

    def _require_node(self, node_id: str) -> StoryNode:
        node = self._data_service.get_node(node_id)
        if node is None:
            raise EditorError(f"Story node '{node_id}' does not exist.")
        return node
