"""
Turn order (initiative) values and their pure state transitions.

A `TurnState` is never mutated in place: each transition returns a new
state, so the service can persist it before anyone else sees it.

The cursor tracks the entry whose turn it is, not a position. Inserting
an entry ahead of the current one moves the cursor along with that entry.
"""

from pydantic import BaseModel, Field, model_validator
from typing import List, Literal, Optional
import uuid

from backend.errors import CombatNotActive

EntryKind = Literal["monster", "player"]


class TurnEntry(BaseModel):
    """One actor in the initiative order."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(..., min_length=1, max_length=100)
    initiative: int
    kind: EntryKind
    member_id: Optional[str] = None  # participant entries only
    hp: Optional[int] = None  # monster health snapshot for display
    max_hp: Optional[int] = None

    @model_validator(mode="after")
    def health_only_for_monsters(self):
        if self.kind == "player" and (self.hp is not None or self.max_hp is not None):
            raise ValueError("Only monster entries carry a health snapshot")
        return self


def sort_entries(entries: List[TurnEntry]) -> List[TurnEntry]:
    """Descending initiative; sorted() is stable, so ties keep insertion order."""
    return sorted(entries, key=lambda e: e.initiative, reverse=True)


class TurnState(BaseModel):
    sequence: List[TurnEntry] = []
    cursor: int = 0
    combat_active: bool = False

    @property
    def current(self) -> Optional[TurnEntry]:
        if not self.sequence:
            return None
        return self.sequence[self.cursor % len(self.sequence)]

    def _require_active(self):
        if not self.combat_active:
            raise CombatNotActive("No combat is running")

    def _cursor_for(self, sequence: List[TurnEntry], fallback: int) -> int:
        current = self.current
        if current is not None:
            for index, entry in enumerate(sequence):
                if entry.id == current.id:
                    return index
        if not sequence:
            return 0
        return min(fallback, len(sequence) - 1)

    @classmethod
    def started(cls, entries: List[TurnEntry]) -> "TurnState":
        return cls(sequence=sort_entries(entries), cursor=0, combat_active=True)

    def with_entry(self, entry: TurnEntry) -> "TurnState":
        self._require_active()
        sequence = sort_entries(self.sequence + [entry])
        return TurnState(
            sequence=sequence,
            cursor=self._cursor_for(sequence, 0),
            combat_active=True,
        )

    def reordered(self, entries: List[TurnEntry]) -> "TurnState":
        self._require_active()
        sequence = sort_entries(entries)
        return TurnState(
            sequence=sequence,
            cursor=self._cursor_for(sequence, self.cursor),
            combat_active=True,
        )

    def advanced(self) -> "TurnState":
        self._require_active()
        if not self.sequence:
            return TurnState(sequence=[], cursor=0, combat_active=True)
        return TurnState(
            sequence=list(self.sequence),
            cursor=(self.cursor + 1) % len(self.sequence),
            combat_active=True,
        )

    def ended(self) -> "TurnState":
        return TurnState()
