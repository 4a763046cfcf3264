"""
Scheduling value types: ratings, card states and the Card record itself.

Cards and review logs are frozen dataclasses. The scheduler never mutates
its input; it returns a new Card built with dataclasses.replace().
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum

from src.core.errors import InvalidRating


class Rating(IntEnum):
    """Learner self-assessment after an attempt."""

    AGAIN = 1  # Could not solve / forgot the approach
    HARD = 2   # Solved with significant struggle
    GOOD = 3   # Solved with normal effort
    EASY = 4   # Solved quickly and cleanly

    @classmethod
    def parse(cls, value: object) -> "Rating":
        """
        Validate raw rating input.

        Accepts a Rating or a plain int 1-4 (or its decimal string form).
        Anything else raises InvalidRating.
        """
        if isinstance(value, Rating):
            return value
        if isinstance(value, bool):
            raise InvalidRating(value)
        if isinstance(value, str):
            try:
                value = int(value.strip())
            except ValueError:
                raise InvalidRating(value) from None
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InvalidRating(value) from None
        raise InvalidRating(value)


class CardState(str, Enum):
    """Per-card position in the learning automaton."""

    NEW = "New"
    LEARNING = "Learning"
    REVIEW = "Review"
    RELEARNING = "Relearning"


class CardType(str, Enum):
    """Review track a card belongs to."""

    DSA = "dsa"
    SYSTEM_DESIGN = "system_design"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Card:
    """
    Scheduling record for one (problem, card type) pair.

    A card in state NEW has not been rated yet; its stability and
    difficulty are 0.0 until the first rating seeds them.
    """

    problem_id: int
    due: datetime
    card_id: int | None = None
    card_type: CardType = CardType.DSA
    stability: float = 0.0          # S, days until R decays to the reference retention
    difficulty: float = 0.0         # D, 1 (easy) .. 10 (hard)
    last_review: datetime | None = None
    reps: int = 0
    lapses: int = 0
    state: CardState = CardState.NEW
    scheduled_days: int = 0
    elapsed_days: int = 0
    version: int = 0                # optimistic concurrency token, owned by persistence

    @classmethod
    def new(
        cls,
        problem_id: int,
        now: datetime,
        card_type: CardType = CardType.DSA,
        card_id: int | None = None,
    ) -> "Card":
        """Card created on first exposure to a problem."""
        return cls(problem_id=problem_id, due=now, card_id=card_id, card_type=card_type)

    @property
    def is_new(self) -> bool:
        return self.state == CardState.NEW

    def is_due(self, now: datetime) -> bool:
        return self.due <= now


@dataclass(frozen=True)
class ReviewLog:
    """Analytics record of one applied rating."""

    card_id: int | None
    problem_id: int
    rating: Rating
    state_before: CardState
    state_after: CardState
    stability_before: float
    stability_after: float
    difficulty_before: float
    difficulty_after: float
    retrievability: float | None  # None for the first rating of a new card
    elapsed_days: int
    scheduled_days: int
    reviewed_at: datetime
