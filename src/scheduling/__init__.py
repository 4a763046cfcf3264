"""
Scheduling Module - FSRS memory model and card automaton.

Quick start:
    from src.scheduling import FSRSScheduler, Card, Rating

    scheduler = FSRSScheduler()
    card = Card.new(problem_id=42, now=now)
    card = scheduler.review(card, Rating.GOOD, now)
"""

from src.scheduling.fsrs import (
    FSRSScheduler,
    check_card,
    elapsed_whole_days,
    retrievability,
)
from src.scheduling.models import (
    Card,
    CardState,
    CardType,
    Rating,
    ReviewLog,
    as_utc,
    utc_now,
)
from src.scheduling.params import DEFAULT_PARAMS, DEFAULT_WEIGHTS, SchedulerParams
from src.scheduling.stats import CardStats, card_stats

__all__ = [
    # Algorithm
    "FSRSScheduler",
    "check_card",
    "elapsed_whole_days",
    "retrievability",
    # Types
    "Card",
    "CardState",
    "CardType",
    "Rating",
    "ReviewLog",
    "as_utc",
    "utc_now",
    # Parameters
    "SchedulerParams",
    "DEFAULT_PARAMS",
    "DEFAULT_WEIGHTS",
    # Stats
    "CardStats",
    "card_stats",
]
