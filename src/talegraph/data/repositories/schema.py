"""
SQLite table definitions using SQLAlchemy.

Column names follow the layout of existing story databases so older files
open unchanged. Visuals, audio, choices and save payloads are JSON text;
an empty value is stored as NULL.
"""
from __future__ import annotations

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ChapterRow(Base):
    __tablename__ = "Chapters"

    id = Column("Id", String, primary_key=True)
    title = Column("Title", Text)
    order_index = Column("OrderIndex", Integer)
    description = Column("Description", Text)


class NodeRow(Base):
    """
    One story node.

    Attributes:
        type: Position of the node type in NodeType declaration order
        visuals/audio/choices: JSON text or NULL
        ending_condition: Condition guarding an ending node, or NULL
    """

    __tablename__ = "Nodes"

    id = Column("Id", String, primary_key=True)
    chapter_id = Column("ChapterId", String, index=True)
    type = Column("Type", Integer)
    speaker = Column("Speaker", Text)
    text = Column("Text", Text)
    order_index = Column("OrderIndex", Integer)
    next_id = Column("NextId", String)
    prev_id = Column("PrevId", String)
    visuals = Column("Visuals", Text)
    audio = Column("Audio", Text)
    choices = Column("Choices", Text)
    ending_condition = Column("EndingCondition", Text)


class GameStateRow(Base):
    __tablename__ = "GameStates"

    slot = Column("Slot", String, primary_key=True)
    data = Column("Data", Text)
    updated_at = Column("UpdatedAt", String)
