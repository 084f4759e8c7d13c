"""Domain-level play state tracking."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class GameState:
    """Progress of one playthrough."""

    chosen_choice_ids: List[str] = field(default_factory=list)
    variables: Dict[str, str] = field(default_factory=dict)
    current_chapter_id: str | None = None
    current_node_id: str | None = None

    def has_chosen(self, choice_id: str) -> bool:
        return choice_id in self.chosen_choice_ids

    def record_choice(self, choice_id: str) -> bool:
        """Add ``choice_id`` to the chosen set; return False if it was already there."""
        if not choice_id or choice_id in self.chosen_choice_ids:
            return False
        self.chosen_choice_ids.append(choice_id)
        return True

    def copy(self) -> "GameState":
        return GameState(
            chosen_choice_ids=list(self.chosen_choice_ids),
            variables=dict(self.variables),
            current_chapter_id=self.current_chapter_id,
            current_node_id=self.current_node_id,
        )
