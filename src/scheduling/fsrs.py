"""
FSRS Scheduler - memory-model scheduling for coding problems.

Implements the four-state card automaton (New, Learning, Review,
Relearning) on top of the FSRS memory model:

- Retrievability: R = r_ref ** (t / S), with t in whole days since the
  last review and r_ref the reference retention (R = 0.9 at t = S).
- First rating seeds S and D from rating-indexed tables.
- Successful review: S' = S * (1 + e^w8 * (11 - D) * S^-w9 * (e^(w10 * (1 - R)) - 1) * p_hard * b_easy)
  Gains shrink for high D, high R (diminishing returns) and lower ratings.
- Lapse: S' = min(S, w11 * D^-w12 * ((S + 1)^w13 - 1) * e^(w14 * (1 - R)))
- Difficulty: linear step per rating damped toward the upper bound, with a
  small mean reversion toward the Easy seed.

The scheduler is a pure function of (card, rating, now, params, fuzz seed).
It holds no state besides its immutable parameters and is safe to call
from any number of threads.
"""

from __future__ import annotations

import math
import random
import zlib
from dataclasses import replace
from datetime import datetime, timedelta

from loguru import logger

from src.core.errors import CorruptState
from src.scheduling.models import Card, CardState, Rating, ReviewLog, as_utc
from src.scheduling.params import DEFAULT_PARAMS, SchedulerParams

# (start, end, factor): fuzz width grows slower for long intervals
FUZZ_RANGES = (
    (2.5, 7.0, 0.15),
    (7.0, 20.0, 0.1),
    (20.0, math.inf, 0.05),
)

# Difficulty step applied to Again while still in (re)learning
LEARNING_AGAIN_DAMPING = 0.5


def elapsed_whole_days(last_review: datetime | None, now: datetime) -> int:
    """Whole days between two instants, truncated; never negative."""
    if last_review is None:
        return 0
    return max(0, (now - last_review).days)


def retrievability(stability: float, elapsed_days: int, reference_retention: float = 0.9) -> float:
    """Estimated recall probability after `elapsed_days` at stability `stability`."""
    if elapsed_days <= 0:
        return 1.0
    return math.pow(reference_retention, elapsed_days / stability)


def check_card(card: Card, params: SchedulerParams = DEFAULT_PARAMS) -> None:
    """Raise CorruptState if the card violates any invariant."""
    if card.reps < 0 or card.lapses < 0:
        raise CorruptState(card.card_id, "negative reps or lapses")
    if card.lapses > card.reps:
        raise CorruptState(card.card_id, f"lapses ({card.lapses}) exceed reps ({card.reps})")
    if card.last_review is not None and card.due < card.last_review:
        raise CorruptState(card.card_id, "due precedes last review")

    if card.state == CardState.NEW:
        if card.reps != 0:
            raise CorruptState(card.card_id, f"new card with {card.reps} reps")
        return

    if card.last_review is None:
        raise CorruptState(card.card_id, f"{card.state.value} card without last review")
    if not math.isfinite(card.stability) or card.stability <= 0:
        raise CorruptState(card.card_id, f"stability {card.stability} is not positive")
    if not math.isfinite(card.difficulty) or not (
        params.difficulty_min <= card.difficulty <= params.difficulty_max
    ):
        raise CorruptState(
            card.card_id,
            f"difficulty {card.difficulty} outside [{params.difficulty_min}, {params.difficulty_max}]",
        )


class FSRSScheduler:
    """
    FSRS spaced repetition scheduler.

    Calculates the next card state and due date from a rating, the current
    time and an immutable parameter set.
    """

    def __init__(self, params: SchedulerParams | None = None):
        self.params = params or DEFAULT_PARAMS
        self.w = self.params.w

    # =========================================================================
    # Public API
    # =========================================================================

    def review(
        self,
        card: Card,
        rating: Rating | int,
        now: datetime,
        fuzz_seed: int | None = None,
    ) -> Card:
        """Apply a rating and return the updated card."""
        updated, _ = self.review_with_log(card, rating, now, fuzz_seed)
        return updated

    def review_with_log(
        self,
        card: Card,
        rating: Rating | int,
        now: datetime,
        fuzz_seed: int | None = None,
    ) -> tuple[Card, ReviewLog]:
        """
        Apply a rating and return (updated card, review log).

        Args:
            card: Current card value (not modified)
            rating: 1-4; anything else raises InvalidRating
            now: Review instant
            fuzz_seed: Seed for interval fuzz. When omitted, a seed is
                derived from the card and `now`, so results stay reproducible.

        Raises:
            InvalidRating: rating outside 1-4
            CorruptState: card violates its invariants
        """
        rating = Rating.parse(rating)
        card = replace(card, due=as_utc(card.due), last_review=as_utc(card.last_review))
        check_card(card, self.params)
        now = as_utc(now)
        seed = fuzz_seed if fuzz_seed is not None else self._derive_seed(card, now)

        elapsed = elapsed_whole_days(card.last_review, now)
        r: float | None = None

        if card.state == CardState.NEW:
            updated = self._review_new(card, rating, now, seed)
        elif card.state in (CardState.LEARNING, CardState.RELEARNING):
            r = self.retrievability_at(card, now)
            updated = self._review_learning(card, rating, now, elapsed, seed)
        else:
            r = self.retrievability_at(card, now)
            updated = self._review_review(card, rating, now, elapsed, r, seed)

        log = ReviewLog(
            card_id=card.card_id,
            problem_id=card.problem_id,
            rating=rating,
            state_before=card.state,
            state_after=updated.state,
            stability_before=card.stability,
            stability_after=updated.stability,
            difficulty_before=card.difficulty,
            difficulty_after=updated.difficulty,
            retrievability=r,
            elapsed_days=elapsed,
            scheduled_days=updated.scheduled_days,
            reviewed_at=now,
        )

        logger.debug(
            f"Card {card.card_id} ({card.state.value} -> {updated.state.value}) rated {rating.name}: "
            f"S {card.stability:.2f} -> {updated.stability:.2f}, "
            f"D {card.difficulty:.2f} -> {updated.difficulty:.2f}, due {updated.due.isoformat()}"
        )
        return updated, log

    def preview(self, card: Card, now: datetime, fuzz_seed: int | None = None) -> dict[Rating, Card]:
        """Outcome of each possible rating, without committing to any."""
        return {rating: self.review(card, rating, now, fuzz_seed) for rating in Rating}

    def retrievability_at(self, card: Card, now: datetime) -> float | None:
        """Current recall probability, or None for unseeded (New) cards."""
        if card.state == CardState.NEW or card.stability <= 0:
            return None
        elapsed = elapsed_whole_days(card.last_review, as_utc(now))
        return retrievability(card.stability, elapsed, self.params.reference_retention)

    def next_interval(self, stability: float) -> int:
        """Convert stability to a clamped interval in whole days."""
        factor = math.log(self.params.request_retention) / math.log(self.params.reference_retention)
        interval = round(stability * factor)
        return self._clamp_interval(interval)

    # =========================================================================
    # State transitions
    # =========================================================================

    def _review_new(self, card: Card, rating: Rating, now: datetime, seed: int) -> Card:
        stability = self.initial_stability(rating)
        difficulty = self.initial_difficulty(rating)

        if rating in (Rating.AGAIN, Rating.HARD):
            state = CardState.LEARNING
            scheduled_days = 0
            due = now + self.params.learning_step
        else:
            state = CardState.REVIEW
            scheduled_days = self._schedule_days(stability, seed)
            due = now + timedelta(days=scheduled_days)

        return replace(
            card,
            stability=stability,
            difficulty=difficulty,
            state=state,
            due=due,
            last_review=now,
            reps=card.reps + 1,
            scheduled_days=scheduled_days,
            elapsed_days=0,
        )

    def _review_learning(
        self, card: Card, rating: Rating, now: datetime, elapsed: int, seed: int
    ) -> Card:
        if rating == Rating.AGAIN:
            step = (
                self.params.learning_step
                if card.state == CardState.LEARNING
                else self.params.relearning_step
            )
            return replace(
                card,
                difficulty=self.next_difficulty(card.difficulty, rating, LEARNING_AGAIN_DAMPING),
                due=now + step,
                last_review=now,
                reps=card.reps + 1,
                scheduled_days=0,
                elapsed_days=elapsed,
            )

        stability = self.graduation_stability(card.stability, rating)
        scheduled_days = self._schedule_days(stability, seed)
        return replace(
            card,
            stability=stability,
            difficulty=self.next_difficulty(card.difficulty, rating),
            state=CardState.REVIEW,
            due=now + timedelta(days=scheduled_days),
            last_review=now,
            reps=card.reps + 1,
            scheduled_days=scheduled_days,
            elapsed_days=elapsed,
        )

    def _review_review(
        self, card: Card, rating: Rating, now: datetime, elapsed: int, r: float, seed: int
    ) -> Card:
        if rating == Rating.AGAIN:
            return replace(
                card,
                stability=self.next_forget_stability(card.difficulty, card.stability, r),
                difficulty=self.next_difficulty(card.difficulty, rating),
                state=CardState.RELEARNING,
                due=now + self.params.relearning_step,
                last_review=now,
                reps=card.reps + 1,
                lapses=card.lapses + 1,
                scheduled_days=0,
                elapsed_days=elapsed,
            )

        stability = self.next_recall_stability(card.difficulty, card.stability, r, rating)
        scheduled_days = self._schedule_days(stability, seed)
        return replace(
            card,
            stability=stability,
            difficulty=self.next_difficulty(card.difficulty, rating),
            due=now + timedelta(days=scheduled_days),
            last_review=now,
            reps=card.reps + 1,
            scheduled_days=scheduled_days,
            elapsed_days=elapsed,
        )

    # =========================================================================
    # Memory model
    # =========================================================================

    def initial_stability(self, rating: Rating) -> float:
        """Seed stability from the first rating."""
        return max(self.params.stability_min, self.w[rating - 1])

    def initial_difficulty(self, rating: Rating) -> float:
        """Seed difficulty from the first rating (Again hardest, Easy easiest)."""
        return self._clamp_difficulty(self._raw_initial_difficulty(rating))

    def _raw_initial_difficulty(self, rating: Rating) -> float:
        return self.w[4] - math.exp(self.w[5] * (rating - 1)) + 1

    def next_difficulty(self, d: float, rating: Rating, damping: float = 1.0) -> float:
        """
        Step difficulty by rating, damped near the ceiling, with mean reversion.

        Again never lowers difficulty, even where mean reversion would pull it down.
        """
        p = self.params
        delta = -self.w[6] * (rating - 3) * damping
        stepped = d + delta * (p.difficulty_max - d) / (p.difficulty_max - p.difficulty_min)
        target = self._raw_initial_difficulty(Rating.EASY)
        reverted = self.w[7] * target + (1 - self.w[7]) * stepped
        if rating == Rating.AGAIN:
            reverted = max(d, reverted)
        return self._clamp_difficulty(reverted)

    def next_recall_stability(self, d: float, s: float, r: float, rating: Rating) -> float:
        """Stability after a successful review. Never below `s`."""
        hard_penalty = self.w[15] if rating == Rating.HARD else 1.0
        easy_bonus = self.w[16] if rating == Rating.EASY else 1.0

        growth = (
            math.exp(self.w[8])
            * (self.params.difficulty_max + 1 - d)
            * math.pow(s, -self.w[9])
            * (math.exp((1 - r) * self.w[10]) - 1)
            * hard_penalty
            * easy_bonus
        )
        return s * (1 + growth)

    def next_forget_stability(self, d: float, s: float, r: float) -> float:
        """Stability after a lapse. Never above `s`."""
        forget = (
            self.w[11]
            * math.pow(d, -self.w[12])
            * (math.pow(s + 1, self.w[13]) - 1)
            * math.exp((1 - r) * self.w[14])
        )
        return max(self.params.stability_min, min(s, forget))

    def graduation_stability(self, s: float, rating: Rating) -> float:
        """Stability when a (re)learning card graduates to Review."""
        multiplier = math.exp(self.w[17] * (rating - 3 + self.w[18]))
        return max(self.params.stability_min, s * multiplier)

    # =========================================================================
    # Intervals
    # =========================================================================

    def _schedule_days(self, stability: float, seed: int) -> int:
        interval = self.next_interval(stability)
        if self.params.enable_fuzz:
            interval = self._apply_fuzz(interval, seed)
        return interval

    def _apply_fuzz(self, interval: int, seed: int) -> int:
        """Spread an interval over a bounded window, reproducibly."""
        if interval < 2.5:
            return interval

        delta = 1.0
        for start, end, factor in FUZZ_RANGES:
            delta += factor * max(min(interval, end) - start, 0.0)

        low = max(2, round(interval - delta), self.params.minimum_interval)
        high = min(round(interval + delta), self.params.maximum_interval)
        if low > high:
            return interval
        return random.Random(seed).randint(low, high)

    def _clamp_interval(self, interval: int) -> int:
        return max(self.params.minimum_interval, min(self.params.maximum_interval, interval))

    def _clamp_difficulty(self, d: float) -> float:
        return max(self.params.difficulty_min, min(self.params.difficulty_max, d))

    @staticmethod
    def _derive_seed(card: Card, now: datetime) -> int:
        key = f"{card.problem_id}:{card.card_type.value}:{card.reps}:{now.isoformat()}"
        return zlib.crc32(key.encode("utf-8"))
