"""
Sessions Module - pairs one new problem with one due review per session.

Quick start:
    from src.sessions import SessionOrchestrator

    orchestrator = SessionOrchestrator(repository)
    plan = orchestrator.build_session()
"""

from src.sessions.models import SessionPlan, SessionSignal, SessionStatus, SlotStatus
from src.sessions.orchestrator import SessionOrchestrator, choose_pair
from src.sessions.ordering import (
    CategoryRotationPolicy,
    InsertionOrderPolicy,
    ProblemCatalog,
    StaticProblemCatalog,
    policy_for,
)

__all__ = [
    # Orchestration
    "SessionOrchestrator",
    "choose_pair",
    # Types
    "SessionPlan",
    "SessionSignal",
    "SessionStatus",
    "SlotStatus",
    # Ordering
    "ProblemCatalog",
    "StaticProblemCatalog",
    "InsertionOrderPolicy",
    "CategoryRotationPolicy",
    "policy_for",
]
