"""Versioned save slot envelope."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from talegraph.domain.state import GameState

SAVE_ENTRY_VERSION = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SaveEntryMeta:
    slot: str = ""
    name: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    thumbnail_base64: str | None = None


@dataclass
class SaveEntryContext:
    """Redundant copy of the position plus presentation hints for the loader."""

    current_chapter_id: str | None = None
    current_node_id: str | None = None
    background_image: str | None = None
    current_bgm_path: str | None = None


@dataclass
class SaveEntry:
    """Self-contained snapshot of a play session stored in one slot."""

    version: int = SAVE_ENTRY_VERSION
    meta: SaveEntryMeta = field(default_factory=SaveEntryMeta)
    state: GameState = field(default_factory=GameState)
    context: SaveEntryContext = field(default_factory=SaveEntryContext)


@dataclass(frozen=True, slots=True)
class SaveEntryMetadata:
    """Listing projection of a save slot."""

    slot: str
    name: str
    updated_at: datetime
    version: int
    thumbnail_length: int | None = None
    short_description: str | None = None

    @classmethod
    def from_entry(cls, entry: SaveEntry, storage_key: str) -> "SaveEntryMetadata | None":
        """Project ``entry``; return None when no slot id can be resolved."""
        slot = (entry.meta.slot or "").strip() or (storage_key or "").strip()
        if not slot:
            return None
        thumbnail = entry.meta.thumbnail_base64
        return cls(
            slot=slot,
            name=entry.meta.name or entry.meta.slot or storage_key,
            updated_at=entry.meta.updated_at,
            version=entry.version,
            thumbnail_length=len(thumbnail) if thumbnail and thumbnail.strip() else None,
            short_description=entry.context.current_chapter_id,
        )
