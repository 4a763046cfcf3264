"""
Session composition results and slot/session status values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from src.scheduling.models import Card


class SessionSignal(str, Enum):
    """Explicit degenerate-composition outcomes. These are not errors."""

    NO_DUE_CARDS = "no_due_cards"
    NO_NEW_CARDS = "no_new_cards"


class SlotStatus(str, Enum):
    PENDING = "pending"
    FINALIZED = "finalized"
    SKIPPED = "skipped"


class SessionStatus(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass
class SessionPlan:
    """The pair of cards a session presents."""

    created_at: datetime
    session_id: int | None = None
    new_card: Card | None = None
    review_card: Card | None = None
    signals: set[SessionSignal] = field(default_factory=set)
    interleaved: bool = False  # a candidate was swapped for category diversity

    @property
    def is_empty(self) -> bool:
        return self.new_card is None and self.review_card is None

    @property
    def cards(self) -> list[Card]:
        return [c for c in (self.new_card, self.review_card) if c is not None]

    def __str__(self) -> str:
        parts = []
        if self.new_card is not None:
            parts.append(f"new=problem {self.new_card.problem_id}")
        if self.review_card is not None:
            parts.append(f"review=problem {self.review_card.problem_id}")
        for signal in sorted(self.signals, key=lambda s: s.value):
            parts.append(signal.value)
        return f"SessionPlan({', '.join(parts) or 'empty'})"
