"""
Practice Module - attempts, mutation policy and time budgets.

Quick start:
    from src.practice import AttemptTracker

    tracker = AttemptTracker(repository)
    attempt = tracker.start_attempt(problem_id=42)
    outcome = tracker.submit_rating(attempt.attempt_id, 3)
"""

from src.db.repository import Attempt
from src.practice.attempts import AttemptTracker, RatingOutcome
from src.practice.mutation import (
    AttemptSummary,
    MutationClass,
    MutationRequest,
    MutationResult,
    RoundRobinMutationPolicy,
    WeightedMutationPolicy,
    mutation_policy_for,
    should_mutate,
)
from src.practice.mutation_client import (
    HttpMutationClient,
    MutationClient,
    MutationDispatcher,
    OfflineMutationClient,
)
from src.practice.timer import PracticeTimer, TimerPhase, TimerResult, budget_ms, phase_for

__all__ = [
    # Attempts
    "Attempt",
    "AttemptTracker",
    "RatingOutcome",
    # Mutation
    "MutationClass",
    "MutationRequest",
    "MutationResult",
    "AttemptSummary",
    "RoundRobinMutationPolicy",
    "WeightedMutationPolicy",
    "mutation_policy_for",
    "should_mutate",
    "MutationClient",
    "HttpMutationClient",
    "OfflineMutationClient",
    "MutationDispatcher",
    # Timer
    "PracticeTimer",
    "TimerPhase",
    "TimerResult",
    "budget_ms",
    "phase_for",
]
