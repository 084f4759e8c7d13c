"""SQLite story storage backed by SQLAlchemy."""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Tuple

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from talegraph.core.logger import get_logger
from talegraph.data import paths
from talegraph.data.errors import DataLoadError, StorageError
from talegraph.data.repositories.base import Clock, StoryDataService, normalize_slot, repair_node_id
from talegraph.data.repositories.schema import Base, ChapterRow, GameStateRow, NodeRow
from talegraph.data.serialization import (
    audio_from_dict,
    audio_to_dict,
    choices_from_list,
    choices_to_list,
    game_state_from_dict,
    game_state_to_dict,
    is_save_entry_payload,
    save_entry_from_dict,
    save_entry_to_dict,
    visuals_from_dict,
    visuals_to_dict,
)
from talegraph.domain.models import Chapter, NodeType, StoryNode
from talegraph.domain.save_entry import SaveEntry, SaveEntryMetadata
from talegraph.domain.state import GameState
from talegraph.services.script_parser import ScriptParser

logger = get_logger(__name__)

_NODE_TYPES = list(NodeType)

# Older databases stored "no value" as an empty string in JSON columns.
_EMPTY_TO_NULL = (
    "UPDATE Nodes SET Visuals = NULL WHERE Visuals = ''",
    "UPDATE Nodes SET Audio = NULL WHERE Audio = ''",
    "UPDATE Nodes SET Choices = NULL WHERE Choices = ''",
    "UPDATE GameStates SET Data = NULL WHERE Data = ''",
)


def _dump_column(payload: object) -> str | None:
    if payload is None or payload == []:
        return None
    return json.dumps(payload, ensure_ascii=False)


def _load_column(value: str | None, context: str) -> object | None:
    if value is None or not value.strip():
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise DataLoadError(f"Invalid JSON in {context}: {exc}") from exc


class SqliteStoryDataService(StoryDataService):
    """Stores chapters, nodes and save slots in one SQLite file.

    All access goes through a single re-entrant lock, so the service can be
    shared between threads. Chapter deletion and script import each run in
    one transaction.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        parser: ScriptParser | None = None,
        clock: Clock | None = None,
        echo: bool = False,
    ) -> None:
        super().__init__(parser=parser, clock=clock)
        if db_path is None:
            db_path = paths.get_stories_path() / paths.SQLITE_FILE_NAME
        self.db_path = Path(db_path)
        self._echo = echo
        self._lock = threading.RLock()
        self._engine = None
        self._session_factory: sessionmaker | None = None

    # Lifecycle -------------------------------------------------------------

    def initialize(self) -> None:
        with self._lock:
            if self._engine is not None:
                return
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                engine = create_engine(
                    f"sqlite:///{self.db_path}",
                    echo=self._echo,
                    connect_args={"check_same_thread": False},
                )
                Base.metadata.create_all(engine)
                self._migrate(engine)
            except (OSError, SQLAlchemyError) as exc:
                raise StorageError(f"Unable to open story database {self.db_path}: {exc}") from exc
            self._engine = engine
            self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
            logger.info("Database initialized at %s", self.db_path)

    @staticmethod
    def _migrate(engine) -> None:
        columns = {column["name"] for column in inspect(engine).get_columns("Nodes")}
        with engine.begin() as conn:
            if "EndingCondition" not in columns:
                logger.info("Adding EndingCondition column to Nodes")
                conn.execute(text("ALTER TABLE Nodes ADD COLUMN EndingCondition TEXT"))
            for statement in _EMPTY_TO_NULL:
                conn.execute(text(statement))

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None
                self._session_factory = None

    @contextmanager
    def _session(self, *, write: bool = False) -> Iterator[Session]:
        with self._lock:
            if self._session_factory is None:
                self.initialize()
            db: Session = self._session_factory()
            try:
                yield db
                if write:
                    db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Database operation failed: %s", exc)
                raise StorageError(f"Story database error: {exc}") from exc
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    # Row conversion --------------------------------------------------------

    @staticmethod
    def _chapter_from_row(row: ChapterRow) -> Chapter:
        return Chapter(
            id=row.id,
            title=row.title or "",
            order_index=row.order_index or 0,
            description=row.description,
        )

    @staticmethod
    def _node_from_row(row: NodeRow) -> StoryNode:
        context = f"node {row.id}"
        type_code = row.type if row.type is not None else 0
        visuals_raw = _load_column(row.visuals, f"{context} visuals")
        audio_raw = _load_column(row.audio, f"{context} audio")
        return StoryNode(
            id=row.id,
            chapter_id=row.chapter_id or "",
            type=_NODE_TYPES[type_code] if 0 <= type_code < len(_NODE_TYPES) else NodeType.DIALOGUE,
            speaker=row.speaker,
            text=row.text or "",
            order_index=row.order_index or 0,
            next_id=row.next_id or None,
            prev_id=row.prev_id or None,
            visuals=visuals_from_dict(visuals_raw) if visuals_raw is not None else None,
            audio=audio_from_dict(audio_raw) if audio_raw is not None else None,
            choices=choices_from_list(_load_column(row.choices, f"{context} choices"), row.id),
            ending_condition=row.ending_condition or None,
        )

    @staticmethod
    def _node_to_row(node: StoryNode) -> NodeRow:
        return NodeRow(
            id=node.id,
            chapter_id=node.chapter_id,
            type=_NODE_TYPES.index(node.type),
            speaker=node.speaker,
            text=node.text,
            order_index=node.order_index,
            next_id=node.next_id,
            prev_id=node.prev_id,
            visuals=_dump_column(visuals_to_dict(node.visuals)) if node.visuals is not None else None,
            audio=_dump_column(audio_to_dict(node.audio)) if node.audio is not None else None,
            choices=_dump_column(choices_to_list(node.choices)),
            ending_condition=node.ending_condition or None,
        )

    # Chapters --------------------------------------------------------------

    def list_chapters(self) -> List[Chapter]:
        with self._session() as db:
            rows = db.query(ChapterRow).order_by(ChapterRow.order_index).all()
            return [self._chapter_from_row(row) for row in rows]

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        with self._session() as db:
            row = db.get(ChapterRow, chapter_id)
            return self._chapter_from_row(row) if row is not None else None

    def save_chapter(self, chapter: Chapter) -> None:
        with self._session(write=True) as db:
            db.merge(
                ChapterRow(
                    id=chapter.id,
                    title=chapter.title,
                    order_index=chapter.order_index,
                    description=chapter.description,
                )
            )

    def delete_chapter(self, chapter_id: str) -> None:
        with self._session(write=True) as db:
            removed = (
                db.query(NodeRow)
                .filter(NodeRow.chapter_id == chapter_id)
                .delete(synchronize_session=False)
            )
            db.query(ChapterRow).filter(ChapterRow.id == chapter_id).delete(synchronize_session=False)
        logger.info("Deleted chapter %s and %d nodes", chapter_id, removed)

    # Nodes -----------------------------------------------------------------

    def list_nodes(self, chapter_id: str) -> List[StoryNode]:
        with self._session() as db:
            rows = (
                db.query(NodeRow)
                .filter(NodeRow.chapter_id == chapter_id)
                .order_by(NodeRow.order_index)
                .all()
            )
            return [self._node_from_row(row) for row in rows]

    def get_node(self, node_id: str) -> StoryNode | None:
        with self._session() as db:
            row = db.get(NodeRow, node_id)
            return self._node_from_row(row) if row is not None else None

    def save_node(self, node: StoryNode, flush: bool = False) -> str:
        with self._session(write=True) as db:
            self._store_node(db, node)
        return node.id

    def _store_node(self, db: Session, node: StoryNode) -> None:
        existing = db.get(NodeRow, node.id)
        repair_node_id(node, existing.chapter_id if existing is not None else None)
        db.merge(self._node_to_row(node))
        db.flush()

    def delete_node(self, node_id: str) -> None:
        with self._session(write=True) as db:
            db.query(NodeRow).filter(NodeRow.id == node_id).delete(synchronize_session=False)

    def _replace_chapter(self, chapter: Chapter, nodes: List[StoryNode]) -> None:
        with self._session(write=True) as db:
            db.query(NodeRow).filter(NodeRow.chapter_id == chapter.id).delete(synchronize_session=False)
            db.merge(
                ChapterRow(
                    id=chapter.id,
                    title=chapter.title,
                    order_index=chapter.order_index,
                    description=chapter.description,
                )
            )
            for node in nodes:
                self._store_node(db, node)

    # Save slots ------------------------------------------------------------

    def _write_slot(self, slot: str, payload: dict) -> None:
        with self._session(write=True) as db:
            db.merge(
                GameStateRow(
                    slot=normalize_slot(slot),
                    data=json.dumps(payload, ensure_ascii=False),
                    updated_at=self._clock().isoformat(),
                )
            )

    def _read_slot(self, slot: str) -> object | None:
        with self._session() as db:
            row = db.get(GameStateRow, normalize_slot(slot))
            if row is None:
                return None
            return _load_column(row.data, f"save slot {row.slot}")

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
        rows: List[Tuple[str, object]] = []
        with self._session() as db:
            for row in db.query(GameStateRow).all():
                try:
                    payload = _load_column(row.data, f"save slot {row.slot}")
                except DataLoadError as exc:
                    logger.warning("Skipping unreadable save slot %s: %s", row.slot, exc)
                    continue
                if payload is not None:
                    rows.append((row.slot, payload))
        return self._collect_slot_metadata(rows)

    def delete_save_slot(self, slot: str) -> None:
        with self._session(write=True) as db:
            db.query(GameStateRow).filter(GameStateRow.slot == normalize_slot(slot)).delete(
                synchronize_session=False
            )
