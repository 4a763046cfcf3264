"""
Mutation policy for repeat attempts.

From the Nth attempt on a problem (N = threshold, default 3) the learner
gets a variation instead of the original statement, so the underlying
pattern is practiced rather than a memorized solution:

- constraint-change: "Solve with O(1) extra space"
- input-type-change: array -> linked list, int -> string
- inversion: find the shortest instead of the longest
- follow-up-extension: "Handle duplicates", "Infinite stream"
- combination: merge two patterns into one problem

Policies are pure functions of a selection counter; the AttemptTracker
owns and persists that counter.
"""

from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from src.db.repository import Attempt


class MutationClass(str, Enum):
    CONSTRAINT_CHANGE = "constraint-change"
    INPUT_TYPE_CHANGE = "input-type-change"
    INVERSION = "inversion"
    FOLLOW_UP_EXTENSION = "follow-up-extension"
    COMBINATION = "combination"

    @property
    def hint(self) -> str:
        return _HINTS[self]


_HINTS = {
    MutationClass.CONSTRAINT_CHANGE: "Tighten a constraint, e.g. O(1) extra space or a stricter time bound",
    MutationClass.INPUT_TYPE_CHANGE: "Change the input type, e.g. array to linked list or int to string",
    MutationClass.INVERSION: "Invert the objective, e.g. shortest instead of longest",
    MutationClass.FOLLOW_UP_EXTENSION: "Add a follow-up, e.g. handle duplicates or an infinite stream",
    MutationClass.COMBINATION: "Combine the problem's pattern with a second pattern",
}


def should_mutate(ordinal: int, threshold: int) -> bool:
    """True when an attempt's 1-based ordinal (counting itself) reaches the threshold."""
    return threshold > 0 and ordinal >= threshold


@dataclass(frozen=True)
class AttemptSummary:
    """What the mutation collaborator needs to know about a prior attempt."""

    ordinal: int
    rating: int | None
    time_spent_ms: int | None
    gave_up: bool
    was_mutation: bool
    mutation_class: str | None = None

    @classmethod
    def from_attempt(cls, attempt: Attempt) -> "AttemptSummary":
        return cls(
            ordinal=attempt.ordinal,
            rating=attempt.rating,
            time_spent_ms=attempt.time_spent_ms,
            gave_up=attempt.gave_up,
            was_mutation=attempt.was_mutation,
            mutation_class=attempt.mutation_class,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ordinal": self.ordinal,
            "rating": self.rating,
            "time_spent_ms": self.time_spent_ms,
            "gave_up": self.gave_up,
            "was_mutation": self.was_mutation,
            "mutation_class": self.mutation_class,
        }


@dataclass(frozen=True)
class MutationRequest:
    """Request payload for the content-mutation collaborator."""

    problem_id: int
    attempt_id: int
    mutation_class: MutationClass
    prior_attempts: tuple[AttemptSummary, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Convert request to API payload format."""
        return {
            "problem_id": self.problem_id,
            "attempt_id": self.attempt_id,
            "mutation_class": self.mutation_class.value,
            "hint": self.mutation_class.hint,
            "prior_attempts": [a.to_dict() for a in self.prior_attempts],
        }


@dataclass(frozen=True)
class MutationResult:
    """Mutated problem returned by the collaborator."""

    attempt_id: int
    description: str
    title: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], attempt_id: int) -> "MutationResult":
        """Parse result from API response."""
        return cls(
            attempt_id=data.get("attempt_id", attempt_id),
            description=data.get("description", ""),
            title=data.get("title"),
        )


class MutationPolicy(Protocol):
    def select(self, counter: int) -> MutationClass: ...


class RoundRobinMutationPolicy:
    """Cycle through every mutation class in declaration order."""

    name = "round_robin"

    def select(self, counter: int) -> MutationClass:
        classes = list(MutationClass)
        return classes[counter % len(classes)]


class WeightedMutationPolicy:
    """
    Seeded weighted pick; the same (seed, counter) always yields the same class.
    """

    name = "weighted"

    def __init__(self, weights: Mapping[MutationClass, float] | None = None, seed: int = 0):
        self.weights = dict(weights) if weights else {cls: 1.0 for cls in MutationClass}
        if any(w < 0 for w in self.weights.values()) or sum(self.weights.values()) <= 0:
            raise ValueError("Mutation weights must be non-negative with a positive total")
        self.seed = seed

    def select(self, counter: int) -> MutationClass:
        rng = random.Random(self.seed * 1_000_003 + counter)
        classes = list(self.weights)
        return rng.choices(classes, weights=[self.weights[c] for c in classes], k=1)[0]


def mutation_policy_for(name: str, seed: int = 0) -> MutationPolicy:
    if name == "round_robin":
        return RoundRobinMutationPolicy()
    if name == "weighted":
        return WeightedMutationPolicy(seed=seed)
    raise ValueError(f"Unknown mutation policy: {name}")
