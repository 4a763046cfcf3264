"""
Problem-category lookup and new-card ordering policies.

Policies are pure: the caller owns and persists the rotation position.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from loguru import logger

from src.core.errors import RecordNotFound
from src.scheduling.models import Card


class ProblemCatalog(Protocol):
    """Problem-metadata collaborator."""

    def category_for(self, problem_id: int) -> str: ...


class StaticProblemCatalog:
    """In-memory catalog, mainly for tests and scripted sessions."""

    def __init__(self, categories: dict[int, str]):
        self._categories = dict(categories)

    def category_for(self, problem_id: int) -> str:
        try:
            return self._categories[problem_id]
        except KeyError:
            raise RecordNotFound("Problem", problem_id) from None

    def add(self, problem_id: int, category: str) -> None:
        self._categories[problem_id] = category


class NewCardPolicy(Protocol):
    def order(
        self, cards: Sequence[Card], category_for: Callable[[int], str], position: int = 0
    ) -> list[Card]: ...

    def next_position(self, chosen_category: str, position: int) -> int: ...


class InsertionOrderPolicy:
    """New cards in the order their problems were added."""

    name = "insertion"

    def order(
        self, cards: Sequence[Card], category_for: Callable[[int], str], position: int = 0
    ) -> list[Card]:
        return sorted(cards, key=lambda c: c.problem_id)

    def next_position(self, chosen_category: str, position: int) -> int:
        return position


class CategoryRotationPolicy:
    """
    Cycle through a fixed category list.

    Cards of the category at `position` come first, then the next category
    in the rotation, and so on; categories outside the rotation go last.
    Within a category, insertion order.
    """

    name = "category_rotation"

    def __init__(self, rotation: Sequence[str]):
        if not rotation:
            raise ValueError("Category rotation must name at least one category")
        self.rotation = list(rotation)

    def order(
        self, cards: Sequence[Card], category_for: Callable[[int], str], position: int = 0
    ) -> list[Card]:
        n = len(self.rotation)
        rank = {cat: (i - position) % n for i, cat in enumerate(self.rotation)}
        return sorted(
            cards,
            key=lambda c: (rank.get(category_for(c.problem_id), n), c.problem_id),
        )

    def next_position(self, chosen_category: str, position: int) -> int:
        if chosen_category in self.rotation:
            return (self.rotation.index(chosen_category) + 1) % len(self.rotation)
        return position


def policy_for(name: str, rotation: Sequence[str] = ()) -> NewCardPolicy:
    if name == "insertion":
        return InsertionOrderPolicy()
    if name == "category_rotation":
        if not rotation:
            logger.warning("Category rotation is empty; falling back to insertion order")
            return InsertionOrderPolicy()
        return CategoryRotationPolicy(rotation)
    raise ValueError(f"Unknown new-card order: {name}")
