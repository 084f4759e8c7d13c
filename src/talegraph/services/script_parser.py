"""Parser for the line-oriented story script format.

A script looks like::

    # Chapter Title
    ## [node_id]
    Body text line 1
    → Choice text → [target_node_id]
    继续 → [next_node_id]
    背景:images/forest.png
    音乐:audio/theme.mp3
    ---

Parsing never fails: constructs that do not match are skipped or kept as
plain text.
"""
from __future__ import annotations

import re
from typing import List, Tuple

from talegraph.core.logger import get_logger
from talegraph.domain.models import AudioData, Chapter, NodeType, StoryChoice, StoryNode, VisualData

logger = get_logger(__name__)

DEFAULT_CHAPTER_TITLE = "未命名章节"
TITLE_PREVIEW_LENGTH = 20

_NODE_HEADING_RE = re.compile(r"##\s*\[(.+?)\]")
_CHOICE_RE = re.compile(r"[→-]\s*(.+?)\s*[→\[]\s*(.+?)\]")
_BRACKET_RE = re.compile(r"\[(.+?)\]")
_PARAGRAPH_SPLIT_RE = re.compile(r"\r?\n\s*\r?\n")

_CHOICE_PREFIXES = ("→ ", "- ")
_NEXT_PREFIXES = ("继续 → ", "next:")
_BACKGROUND_PREFIXES = ("背景:", "@background:")
_BGM_PREFIXES = ("音乐:", "@bgm:")
_NODE_BREAKS = ("---", "***")


def make_node_id(chapter_id: str, index: int) -> str:
    """Return the generated id for the ``index``-th node of a chapter."""
    return f"{chapter_id}_node_{index:04d}"


def namespace_node_id(raw_id: str, chapter_id: str) -> str:
    """Prefix ``raw_id`` with the chapter id unless it already carries it."""
    prefix = f"{chapter_id}_"
    return raw_id if raw_id.startswith(prefix) else f"{prefix}{raw_id}"


class ScriptParser:
    """Turns author text into a Chapter and its ordered nodes."""

    def parse_script(self, script: str, chapter_id: str) -> Tuple[Chapter, List[StoryNode]]:
        lines = self._strip_code_fence([line.rstrip("\r") for line in script.split("\n")])
        chapter = Chapter(id=chapter_id, title=DEFAULT_CHAPTER_TITLE, order_index=0)
        nodes: List[StoryNode] = []
        current: StoryNode | None = None
        buffer: List[str] = []
        loose_prose: List[str] = []
        node_index = 0
        found_title = False

        for raw_line in lines:
            line = raw_line.strip()

            if line.startswith("# ") and not line.startswith("## "):
                chapter.title = line[2:].strip()
                found_title = True
                continue

            if not found_title and line and not line.startswith("##"):
                chapter.title = self._preview_title(line)
                found_title = True

            if line.startswith("## [") and "]" in line:
                self._flush(current, buffer, nodes)
                buffer = []
                match = _NODE_HEADING_RE.search(line)
                raw_id = match.group(1).strip() if match else ""
                node_id = namespace_node_id(raw_id, chapter_id) if raw_id else make_node_id(chapter_id, node_index)
                current = StoryNode(
                    id=node_id,
                    chapter_id=chapter_id,
                    type=NodeType.NARRATION,
                    order_index=node_index,
                )
                node_index += 1
                continue

            if line.startswith(_CHOICE_PREFIXES) and current is not None:
                match = _CHOICE_RE.search(line)
                if match:
                    # "→ text → [id]" leaves the opening bracket in the second group.
                    target = match.group(2).strip().lstrip("[").strip()
                    current.type = NodeType.CHOICE
                    current.choices.append(StoryChoice(text=match.group(1).strip(), target_node_id=target))
                else:
                    logger.debug("Ignoring malformed choice line in %s: %r", current.id, line)
                continue

            if line.startswith(_NEXT_PREFIXES):
                match = _BRACKET_RE.search(line)
                if match and current is not None:
                    current.next_id = match.group(1)
                continue

            if line.startswith(_BACKGROUND_PREFIXES):
                if current is not None:
                    if current.visuals is None:
                        current.visuals = VisualData()
                    current.visuals.background_image = line.split(":", 1)[1].strip()
                continue

            if line.startswith(_BGM_PREFIXES):
                if current is not None:
                    if current.audio is None:
                        current.audio = AudioData()
                    current.audio.bgm_file = line.split(":", 1)[1].strip()
                continue

            if line in _NODE_BREAKS:
                if current is not None:
                    self._flush(current, buffer, nodes, keep_empty=True)
                    buffer = []
                    current = None
                continue

            if current is not None:
                buffer.append(line)
            elif line and not line.startswith("#"):
                loose_prose.append(line)

        self._flush(current, buffer, nodes)

        if not nodes and loose_prose:
            logger.debug("Script for %s has no node markup; keeping it as one narration node", chapter_id)
            nodes.append(
                StoryNode(
                    id=make_node_id(chapter_id, 0),
                    chapter_id=chapter_id,
                    type=NodeType.NARRATION,
                    text="\n".join(loose_prose),
                )
            )

        self._link_neighbours(nodes)
        return chapter, nodes

    def parse_simple_text(self, text: str, chapter_id: str) -> List[StoryNode]:
        """Split plain prose on blank lines into linked narration nodes."""
        paragraphs = [part.strip() for part in _PARAGRAPH_SPLIT_RE.split(text)]
        paragraphs = [part for part in paragraphs if part]
        nodes: List[StoryNode] = []
        for index, paragraph in enumerate(paragraphs):
            nodes.append(
                StoryNode(
                    id=make_node_id(chapter_id, index),
                    chapter_id=chapter_id,
                    type=NodeType.NARRATION,
                    text=paragraph,
                    order_index=index,
                    next_id=make_node_id(chapter_id, index + 1) if index < len(paragraphs) - 1 else None,
                    prev_id=make_node_id(chapter_id, index - 1) if index > 0 else None,
                )
            )
        return nodes

    @staticmethod
    def has_node_markup(script: str) -> bool:
        """Return True if the script declares at least one ``## [id]`` node."""
        return any(line.strip().startswith("## [") for line in script.split("\n"))

    @staticmethod
    def _strip_code_fence(lines: List[str]) -> List[str]:
        if lines and lines[0].lstrip().startswith("```"):
            lines = lines[1:]
            if lines and lines[-1].strip().startswith("```"):
                lines = lines[:-1]
        return lines

    @staticmethod
    def _preview_title(line: str) -> str:
        if len(line) > TITLE_PREVIEW_LENGTH:
            return line[:TITLE_PREVIEW_LENGTH] + "..."
        return line

    @staticmethod
    def _flush(
        node: StoryNode | None,
        buffer: List[str],
        nodes: List[StoryNode],
        *,
        keep_empty: bool = False,
    ) -> None:
        """Close ``node`` with the buffered text; empty nodes are dropped unless forced closed."""
        if node is None:
            return
        text = "\n".join(buffer).strip()
        if not text and not keep_empty:
            logger.debug("Dropping empty node %s", node.id)
            return
        node.text = text
        nodes.append(node)

    @staticmethod
    def _link_neighbours(nodes: List[StoryNode]) -> None:
        # Choice nodes branch explicitly and are never auto-linked.
        for index, node in enumerate(nodes):
            if node.type is NodeType.CHOICE:
                continue
            if index > 0 and node.prev_id is None:
                node.prev_id = nodes[index - 1].id
            if index < len(nodes) - 1 and node.next_id is None:
                node.next_id = nodes[index + 1].id
