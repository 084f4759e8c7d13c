"""Named save slots on top of the storage contract."""
from __future__ import annotations

from typing import TYPE_CHECKING, List

from talegraph.core.logger import get_logger
from talegraph.data.errors import DataError
from talegraph.domain.save_entry import (
    SAVE_ENTRY_VERSION,
    SaveEntry,
    SaveEntryContext,
    SaveEntryMeta,
    SaveEntryMetadata,
    utc_now,
)
from talegraph.services.errors import SaveLoadError

if TYPE_CHECKING:
    from talegraph.data.repositories.base import Clock, StoryDataService
    from talegraph.services.navigator import Navigator

logger = get_logger(__name__)

QUICK_SAVE_SLOT = "quicksave"
QUICK_SAVE_NAME = "QuickSave"


def default_slot_id(now) -> str:
    return f"slot_{now:%Y%m%d_%H%M%S_%f}"


class SaveManager:
    """Creates, restores, lists and deletes save slots for a navigator session."""

    QUICK_SAVE_SLOT = QUICK_SAVE_SLOT

    def __init__(
        self,
        data_service: "StoryDataService",
        navigator: "Navigator",
        *,
        clock: "Clock | None" = None,
    ) -> None:
        self._data_service = data_service
        self._navigator = navigator
        self._clock = clock or utc_now
        self.current_slot: str | None = None

    def build_entry(self, slot: str, name: str, thumbnail_base64: str | None = None) -> SaveEntry:
        """Capture the navigator's position and chosen set as a save envelope."""
        now = self._clock()
        state = self._navigator.snapshot()
        return SaveEntry(
            version=SAVE_ENTRY_VERSION,
            meta=SaveEntryMeta(
                slot=slot,
                name=name,
                created_at=now,
                updated_at=now,
                thumbnail_base64=thumbnail_base64,
            ),
            state=state,
            context=SaveEntryContext(
                current_chapter_id=state.current_chapter_id,
                current_node_id=state.current_node_id,
                background_image=self._navigator.background_image,
                current_bgm_path=self._navigator.current_bgm_path,
            ),
        )

    def save_to_slot(
        self,
        slot: str | None = None,
        name: str | None = None,
        thumbnail_base64: str | None = None,
    ) -> SaveEntry:
        slot_id = slot.strip() if slot and slot.strip() else default_slot_id(self._clock())
        entry = self.build_entry(slot_id, name or slot_id, thumbnail_base64)
        try:
            self._data_service.save_raw_slot(slot_id, entry)
        except DataError as exc:
            raise SaveLoadError(f"Unable to save slot '{slot_id}': {exc}") from exc
        self.current_slot = slot_id
        return entry

    def quick_save(self) -> SaveEntry:
        entry = self.build_entry(QUICK_SAVE_SLOT, QUICK_SAVE_NAME)
        try:
            self._data_service.save_raw_slot(QUICK_SAVE_SLOT, entry)
        except DataError as exc:
            raise SaveLoadError(f"Quick save failed: {exc}") from exc
        return entry

    def load_slot(self, slot: str | None) -> bool:
        """Restore a slot into the navigator; return False if there is nothing to load."""
        if slot is None or not slot.strip():
            return False
        slot_id = slot.strip()
        if not self._restore(slot_id):
            return False
        self.current_slot = slot_id
        return True

    def quick_load(self) -> bool:
        return self._restore(QUICK_SAVE_SLOT)

    def _restore(self, slot_id: str) -> bool:
        try:
            entry = self._data_service.load_raw_slot(slot_id)
        except DataError as exc:
            raise SaveLoadError(f"Unable to load slot '{slot_id}': {exc}") from exc
        if entry is None:
            logger.info("Save slot %s is empty", slot_id)
            return False
        self._navigator.restore(entry.state)
        chapter_id = entry.context.current_chapter_id or entry.state.current_chapter_id
        node_id = entry.context.current_node_id or entry.state.current_node_id
        try:
            if chapter_id:
                self._navigator.load_chapter(chapter_id)
            if node_id and not (
                self._navigator.current_node is not None and self._navigator.current_node.id == node_id
            ):
                if not self._navigator.navigate_to(node_id):
                    logger.warning("Saved node %s of slot %s could not be found", node_id, slot_id)
        except DataError as exc:
            raise SaveLoadError(f"Unable to restore slot '{slot_id}': {exc}") from exc
        logger.info("Loaded slot %s at %s/%s", slot_id, chapter_id, node_id)
        return True

    def delete_slot(self, slot: str | None) -> None:
        if slot is None or not slot.strip():
            return
        slot_id = slot.strip()
        try:
            self._data_service.delete_save_slot(slot_id)
        except DataError as exc:
            raise SaveLoadError(f"Unable to delete slot '{slot_id}': {exc}") from exc
        if self.current_slot is not None and self.current_slot.lower() == slot_id.lower():
            self.current_slot = None

    def list_slots(self) -> List[SaveEntryMetadata]:
        try:
            return self._data_service.list_save_slots()
        except DataError:
            logger.exception("Listing save slots failed")
            return []
