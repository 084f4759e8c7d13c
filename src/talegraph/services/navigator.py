"""Runtime walk over a stored story graph."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Sequence, Tuple

from talegraph.core.logger import get_logger
from talegraph.data.errors import DataError
from talegraph.domain.conditions import evaluate_condition
from talegraph.domain.models import Chapter, StoryChoice, StoryNode
from talegraph.domain.state import GameState

if TYPE_CHECKING:
    from talegraph.data.repositories.base import StoryDataService

logger = get_logger(__name__)

DEFAULT_AUTOSAVE_SLOT = "default"
# Choices whose label contains one of these are plain "go on" links and are not offered.
CONTINUE_MARKERS = ("继续", "continue")


@dataclass(slots=True)
class StoryNodeView:
    """Data returned to the presentation layer for rendering."""

    node_id: str
    chapter_id: str
    text: str
    speaker: str | None = None
    choices: List[str] = field(default_factory=list)
    background_image: str | None = None
    bgm_path: str | None = None
    is_ending: bool = False


def is_continue_choice(choice: StoryChoice) -> bool:
    label = (choice.text or "").lower()
    return any(marker in label for marker in CONTINUE_MARKERS)


class Navigator:
    """Tracks the current chapter and node and moves through the graph.

    Nodes are looked up lazily: a link is only resolved when it is followed,
    so a chapter may point at nodes that live in other chapters or that use
    a shortened id.
    """

    def __init__(self, data_service: "StoryDataService", *, autosave_slot: str = DEFAULT_AUTOSAVE_SLOT) -> None:
        self._data_service = data_service
        self._autosave_slot = autosave_slot
        self._chapters: List[Chapter] = []
        self._cache: Dict[str, StoryNode] = {}
        self._history: List[str] = []
        self._current_node: StoryNode | None = None
        self._current_chapter_id: str | None = None
        self._state = GameState()
        self._background_image: str | None = None
        self._current_bgm_path: str | None = None

    # Read-only state -------------------------------------------------------

    @property
    def current_node(self) -> StoryNode | None:
        return self._current_node

    @property
    def current_chapter_id(self) -> str | None:
        return self._current_chapter_id

    @property
    def chapters(self) -> List[Chapter]:
        return list(self._chapters)

    @property
    def history(self) -> List[str]:
        return list(self._history)

    @property
    def chosen_choice_ids(self) -> List[str]:
        return list(self._state.chosen_choice_ids)

    @property
    def background_image(self) -> str | None:
        return self._background_image

    @property
    def current_bgm_path(self) -> str | None:
        return self._current_bgm_path

    # Lifecycle -------------------------------------------------------------

    def initialize(self) -> None:
        self._data_service.initialize()
        self._refresh_chapters()
        if self._chapters:
            self.load_chapter(self._chapters[0].id)
        else:
            logger.info("No chapters available")

    def load_chapter(self, chapter_id: str) -> bool:
        """Load ``chapter_id`` and position at its first node; return False if it has none."""
        self._refresh_chapters()
        nodes = self._data_service.list_nodes(chapter_id)
        self._cache = {node.id: node for node in nodes}
        self._history.clear()
        self._current_chapter_id = chapter_id
        if not nodes:
            logger.warning("Chapter %s has no nodes", chapter_id)
            self._current_node = None
            return False
        self._enter(nodes[0])
        logger.info("Loaded chapter %s with %d nodes", chapter_id, len(nodes))
        return True

    def select_chapter(self, chapter_id: str | None) -> bool:
        if chapter_id is None or not chapter_id.strip():
            return False
        return self.load_chapter(chapter_id.strip())

    def restart(self) -> bool:
        if not self.can_restart():
            return False
        self._history.clear()
        self._refresh_chapters()
        if not self._chapters:
            return False
        return self.load_chapter(self._chapters[0].id)

    def restore(self, state: GameState) -> None:
        """Replace the chosen set and variables with those of ``state``."""
        self._state = GameState(
            chosen_choice_ids=[],
            variables=dict(state.variables),
            current_chapter_id=state.current_chapter_id,
            current_node_id=state.current_node_id,
        )
        for choice_id in state.chosen_choice_ids:
            self._state.record_choice(choice_id)

    def snapshot(self) -> GameState:
        state = self._state.copy()
        state.current_chapter_id = self._current_chapter_id
        state.current_node_id = self._current_node.id if self._current_node is not None else None
        return state

    # Derived predicates ----------------------------------------------------

    def visible_choices(self) -> List[StoryChoice]:
        node = self._current_node
        if node is None:
            return []
        return [
            choice
            for choice in node.choices
            if not is_continue_choice(choice)
            and not (choice.is_one_time and choice.id and self._state.has_chosen(choice.id))
        ]

    def has_visible_choices(self) -> bool:
        return bool(self.visible_choices())

    def can_next(self) -> bool:
        node = self._current_node
        return node is not None and bool(node.next_id) and not self.has_visible_choices()

    def can_prev(self) -> bool:
        node = self._current_node
        return node is not None and bool(node.prev_id) and not self.has_visible_choices()

    def can_restart(self) -> bool:
        return not self.has_visible_choices()

    def can_go_to_next_chapter(self) -> bool:
        node = self._current_node
        if node is None or not self._current_chapter_id:
            return False
        ends_by_condition = node.is_ending and self.evaluate_condition(node.ending_condition)
        runs_out = not node.next_id and not self.has_visible_choices()
        if not (ends_by_condition or runs_out):
            return False
        return self._next_chapter() is not None

    def evaluate_condition(self, expression: str | None) -> bool:
        return evaluate_condition(expression, set(self._state.chosen_choice_ids))

    # Movement --------------------------------------------------------------

    def next(self) -> bool:
        if not self.can_next():
            return False
        return self.navigate_to(self._current_node.next_id)

    def prev(self) -> bool:
        if not self.can_prev():
            return False
        return self.navigate_to(self._current_node.prev_id)

    def navigate_to(self, node_id: str | None) -> bool:
        """Move to ``node_id``; return False and keep the current position on a miss."""
        if node_id is None or not node_id.strip():
            logger.warning("navigate_to called with an empty node id")
            return False
        target = node_id.strip()
        node = self._resolve(target)
        if node is None:
            logger.warning("Node '%s' not found in cache, storage, or any chapter", target)
            return False
        if self._current_node is not None:
            self._history.append(self._current_node.id)
        self._enter(node)
        return True

    def choose(self, choice: StoryChoice) -> bool:
        """Record ``choice`` and follow it; return whether the position changed."""
        if choice.id:
            self._state.record_choice(choice.id)
        logger.debug(
            "Choice %s -> node %r, chapter %r", choice.id, choice.target_node_id, choice.target_chapter_id
        )
        moved = False
        target_node = (choice.target_node_id or "").strip()
        target_chapter = (choice.target_chapter_id or "").strip()
        if target_node:
            moved = self.navigate_to(target_node)
        elif target_chapter:
            if self._data_service.get_chapter(target_chapter) is not None:
                moved = self.load_chapter(target_chapter)
            else:
                logger.info("Choice target chapter %s does not exist; trying it as a node id", target_chapter)
                moved = self.navigate_to(target_chapter)
        self._autosave()
        return moved

    def choose_index(self, index: int) -> bool:
        choices = self.visible_choices()
        if not 0 <= index < len(choices):
            node_id = self._current_node.id if self._current_node is not None else None
            raise IndexError(f"Choice index {index} is invalid for node '{node_id}'.")
        return self.choose(choices[index])

    def go_to_next_chapter(self) -> bool:
        if not self.can_go_to_next_chapter():
            return False
        self._refresh_chapters()
        following = self._next_chapter()
        if following is None:
            return False
        return self.load_chapter(following.id)

    def get_current_node_view(self) -> StoryNodeView | None:
        node = self._current_node
        if node is None:
            return None
        return StoryNodeView(
            node_id=node.id,
            chapter_id=node.chapter_id,
            text=node.text,
            speaker=node.speaker,
            choices=[choice.text for choice in self.visible_choices()],
            background_image=self._background_image,
            bgm_path=self._current_bgm_path,
            is_ending=node.is_ending,
        )

    # Internals -------------------------------------------------------------

    def _refresh_chapters(self) -> None:
        self._chapters = self._data_service.list_chapters()

    def _next_chapter(self) -> Chapter | None:
        ids = [chapter.id for chapter in self._chapters]
        if self._current_chapter_id not in ids:
            return None
        index = ids.index(self._current_chapter_id)
        if index >= len(ids) - 1:
            return None
        return self._chapters[index + 1]

    def _enter(self, node: StoryNode) -> None:
        self._current_node = node
        self._current_chapter_id = node.chapter_id or self._current_chapter_id
        background = node.visuals.background_image if node.visuals is not None else None
        if background and background.strip():
            self._background_image = background
        bgm = node.audio.bgm_file if node.audio is not None else None
        if bgm and bgm.strip():
            self._current_bgm_path = bgm

    def _resolve(self, target: str) -> StoryNode | None:
        node = self._cache.get(target)
        if node is not None:
            logger.debug("Resolved '%s' from the chapter cache", target)
            return node
        if self._current_chapter_id:
            namespaced = f"{self._current_chapter_id}_{target}"
            node = self._cache.get(namespaced)
            if node is not None:
                logger.debug("Resolved '%s' as '%s' in the current chapter", target, namespaced)
                return node
        node = self._data_service.get_node(target)
        if node is not None:
            logger.debug("Resolved '%s' from storage (chapter %s)", target, node.chapter_id)
            self._cache[node.id] = node
            return node
        node = self._scan_chapters(target)
        if node is not None:
            self._cache[node.id] = node
        return node

    def _scan_chapters(self, target: str) -> StoryNode | None:
        if not self._chapters:
            self._refresh_chapters()
        candidates: List[StoryNode] = []
        for chapter in self._chapters:
            candidates.extend(self._data_service.list_nodes(chapter.id))
        lowered = target.lower()
        passes: Sequence[Tuple[str, Callable[[str], bool]]] = (
            ("exact id", lambda node_id: node_id == lowered),
            ("chapter-prefixed id", lambda node_id: node_id.endswith(f"_{lowered}")),
            ("id suffix", lambda node_id: node_id.endswith(lowered)),
        )
        for label, matches in passes:
            for node in candidates:
                if matches(node.id.lower()):
                    logger.info(
                        "Resolved '%s' to '%s' by %s search (chapter %s)", target, node.id, label, node.chapter_id
                    )
                    return node
        return None

    def _autosave(self) -> None:
        try:
            self._data_service.save_game_state(self._autosave_slot, self.snapshot())
        except DataError:
            logger.exception("Autosave to slot %s failed", self._autosave_slot)
