"""
Aggregate counts over a set of cards.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from src.scheduling.models import Card, CardState


@dataclass
class CardStats:
    """Card counts by state plus what is due before the end of today."""

    new_count: int = 0
    learning_count: int = 0
    review_count: int = 0
    relearning_count: int = 0
    due_today: int = 0

    @property
    def total(self) -> int:
        return self.new_count + self.learning_count + self.review_count + self.relearning_count


def card_stats(cards: Iterable[Card], now: datetime) -> CardStats:
    """
    Count cards by state.

    `due_today` counts seen cards whose due instant falls before the end of
    the current (UTC) day; New cards are counted only in `new_count`.
    """
    end_of_day = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo) + timedelta(days=1)
    stats = CardStats()
    for card in cards:
        if card.state == CardState.NEW:
            stats.new_count += 1
            continue
        if card.state == CardState.LEARNING:
            stats.learning_count += 1
        elif card.state == CardState.REVIEW:
            stats.review_count += 1
        else:
            stats.relearning_count += 1
        if card.due < end_of_day:
            stats.due_today += 1
    return stats
