"""
Session Orchestrator - pairs one new problem with one due review.

Each session request yields at most one New card and one due card:
- Review candidates: seen cards with due <= now, not in another live session,
  ordered by earliest due, then more lapses, then older last review.
- New candidates: New cards plus problems never exposed, not in another live
  session, ordered by the configured new-card policy.
- Interleaving: if the two picks share a category and a different-category
  alternative exists in either pool, swap it in. Otherwise the pair stands.

Selected cards are marked in-session until their slots are finalized or
skipped, or until the lock goes stale and the session is abandoned.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from src.core.errors import RecordNotFound
from src.core.locks import CardLockRegistry, KeyedMutex
from src.db.repository import PracticeSession, Repository
from src.scheduling.models import Card, CardState, CardType, as_utc, utc_now
from src.sessions.models import SessionPlan, SessionSignal, SessionStatus, SlotStatus
from src.sessions.ordering import (
    InsertionOrderPolicy,
    NewCardPolicy,
    ProblemCatalog,
    policy_for,
)

if TYPE_CHECKING:
    from config import Settings

ROTATION_POSITION_KEY = "new_card_rotation_position"


def choose_pair(
    review_candidates: Sequence[Card],
    new_candidates: Sequence[Card],
    category_for: Callable[[int], str],
    new_is_fixed: bool = False,
) -> tuple[Card | None, Card | None, bool]:
    """
    Pick (review, new) from ordered candidate lists.

    Returns the pair and whether a candidate was swapped for category
    diversity. A fixed new card (caller pre-selected) is never swapped out.
    """
    review = review_candidates[0] if review_candidates else None
    new = new_candidates[0] if new_candidates else None
    if review is None or new is None:
        return review, new, False

    review_cat = category_for(review.problem_id)
    new_cat = category_for(new.problem_id)
    if review_cat != new_cat:
        return review, new, False

    if not new_is_fixed:
        for alt in new_candidates[1:]:
            if category_for(alt.problem_id) != review_cat:
                logger.debug(f"Interleave: swapped new problem {new.problem_id} -> {alt.problem_id}")
                return review, alt, True

    for alt in review_candidates[1:]:
        if category_for(alt.problem_id) != new_cat:
            logger.debug(f"Interleave: swapped review problem {review.problem_id} -> {alt.problem_id}")
            return alt, new, True

    return review, new, False


class SessionOrchestrator:
    """
    Builds and tracks practice sessions.

    Composition is serialized so two concurrent requests cannot pick the same
    card; per-card work is additionally serialized through the shared
    KeyedMutex the AttemptTracker also uses.
    """

    def __init__(
        self,
        repository: Repository,
        catalog: ProblemCatalog | None = None,
        new_card_policy: NewCardPolicy | None = None,
        lock_timeout: timedelta = timedelta(minutes=180),
        locks: CardLockRegistry | None = None,
        mutex: KeyedMutex | None = None,
    ):
        self.repository = repository
        self.catalog = catalog or repository
        self.new_card_policy = new_card_policy or InsertionOrderPolicy()
        self.locks = locks or CardLockRegistry(lock_timeout)
        self.mutex = mutex or KeyedMutex()
        self._build_lock = threading.Lock()
        self._restore_locks()

    @classmethod
    def from_settings(
        cls,
        repository: Repository,
        settings: "Settings",
        mutex: KeyedMutex | None = None,
    ) -> "SessionOrchestrator":
        return cls(
            repository,
            new_card_policy=policy_for(settings.new_card_order, settings.get_category_rotation()),
            lock_timeout=timedelta(minutes=settings.session_lock_timeout_minutes),
            mutex=mutex,
        )

    def _restore_locks(self) -> None:
        """Re-mark cards of sessions still open in storage (e.g. after a restart)."""
        for stored in self.repository.list_open_sessions():
            for slot in ("new", "review"):
                card_id = getattr(stored, f"{slot}_card_id")
                status = getattr(stored, f"{slot}_slot_status")
                if card_id is not None and status == SlotStatus.PENDING.value:
                    self.locks.try_acquire(card_id, stored.session_id, stored.started_at)

    # =========================================================================
    # Composition
    # =========================================================================

    def _category_lookup(self) -> Callable[[int], str]:
        cache: dict[int, str] = {}

        def category_for(problem_id: int) -> str:
            if problem_id not in cache:
                cache[problem_id] = self.catalog.category_for(problem_id)
            return cache[problem_id]

        return category_for

    def review_candidates(self, now: datetime, card_type: CardType | None = None) -> list[Card]:
        locked = self.locks.locked_card_ids(now)
        return [c for c in self.repository.list_due_cards(now, card_type) if c.card_id not in locked]

    def new_candidates(
        self,
        now: datetime,
        card_type: CardType | None = None,
        category_for: Callable[[int], str] | None = None,
    ) -> list[Card]:
        locked = self.locks.locked_card_ids(now)
        candidates = [c for c in self.repository.list_new_cards(card_type) if c.card_id not in locked]
        for problem in self.repository.list_unexposed_problems(card_type):
            # Materialized as a real card only when selected
            ctype = card_type or (
                CardType.SYSTEM_DESIGN if problem.difficulty == "SystemDesign" else CardType.DSA
            )
            candidates.append(Card.new(problem.problem_id, now, card_type=ctype))
        position = int(self.repository.get_config(ROTATION_POSITION_KEY, "0") or 0)
        return self.new_card_policy.order(candidates, category_for or self._category_lookup(), position)

    def build_session(
        self,
        now: datetime | None = None,
        card_type: CardType | None = None,
        new_problem_id: int | None = None,
    ) -> SessionPlan:
        """
        Compose, persist and lock a new session.

        Args:
            now: Request instant (defaults to the current UTC time)
            card_type: Restrict both slots to one review track
            new_problem_id: Caller pre-selected problem for the new slot

        Returns:
            SessionPlan; `signals` carries NO_DUE_CARDS / NO_NEW_CARDS when a
            slot could not be filled. An empty plan is not persisted.
        """
        now = as_utc(now) if now is not None else utc_now()
        with self._build_lock:
            category_for = self._category_lookup()
            reviews = self.review_candidates(now, card_type)
            news = self.new_candidates(now, card_type, category_for)

            fixed = False
            if new_problem_id is not None:
                preselected = self._preselected_card(new_problem_id, now, card_type)
                if preselected is not None:
                    news = [preselected]
                    fixed = True

            review, new, swapped = choose_pair(reviews, news, category_for, new_is_fixed=fixed)

            plan = SessionPlan(created_at=now, interleaved=swapped)
            if review is None:
                plan.signals.add(SessionSignal.NO_DUE_CARDS)
            if new is None:
                plan.signals.add(SessionSignal.NO_NEW_CARDS)

            if new is not None and new.card_id is None:
                new = self.repository.get_or_create_card(new.problem_id, now, new.card_type)
            plan.new_card = new
            plan.review_card = review

            if plan.is_empty:
                logger.info(f"Session composition: nothing to practice at {now.isoformat()}")
                return plan

            with self.mutex.hold_many(c.card_id for c in plan.cards):
                stored = self.repository.create_session(now, new_card=new, review_card=review)
                plan.session_id = stored.session_id
                for card in plan.cards:
                    self.locks.try_acquire(card.card_id, stored.session_id, now)

            if new is not None:
                self._advance_rotation(category_for(new.problem_id))

        logger.info(
            f"Session {plan.session_id} composed: "
            f"new={new.problem_id if new else None} ({category_for(new.problem_id) if new else '-'}), "
            f"review={review.problem_id if review else None} "
            f"({category_for(review.problem_id) if review else '-'}), "
            f"interleaved={swapped}, signals={[s.value for s in plan.signals]}"
        )
        return plan

    def _preselected_card(
        self, problem_id: int, now: datetime, card_type: CardType | None
    ) -> Card | None:
        existing = self.repository.get_card_for_problem(problem_id, card_type or CardType.DSA)
        if existing is None:
            self.repository.get_problem(problem_id)
            return Card.new(problem_id, now, card_type=card_type or CardType.DSA)
        if existing.state != CardState.NEW:
            logger.warning(
                f"Pre-selected problem {problem_id} was already practiced; using the new-card policy"
            )
            return None
        if self.locks.is_locked(existing.card_id, now):
            logger.warning(f"Pre-selected problem {problem_id} is in another open session")
            return None
        return existing

    def _advance_rotation(self, category: str) -> None:
        position = int(self.repository.get_config(ROTATION_POSITION_KEY, "0") or 0)
        next_position = self.new_card_policy.next_position(category, position)
        if next_position != position:
            self.repository.set_config(ROTATION_POSITION_KEY, str(next_position))

    # =========================================================================
    # Slot lifecycle
    # =========================================================================

    def _resolve_slot(
        self, session_id: int, slot: str, status: SlotStatus, now: datetime
    ) -> PracticeSession:
        stored = self.repository.get_session(session_id)
        card_id = getattr(stored, f"{slot}_card_id")
        if card_id is None:
            raise RecordNotFound(f"Session {session_id} slot", slot)
        with self.mutex.hold(card_id):
            stored = self.repository.set_slot_status(session_id, slot, status.value)
            self.locks.release(card_id, session_id)
        return self._complete_if_resolved(stored, now)

    def _complete_if_resolved(self, stored: PracticeSession, now: datetime) -> PracticeSession:
        if stored.status != SessionStatus.OPEN.value:
            return stored
        pending = [
            s for s in (stored.new_slot_status, stored.review_slot_status)
            if s == SlotStatus.PENDING.value
        ]
        if pending:
            return stored
        self.locks.release_session(stored.session_id)
        logger.info(f"Session {stored.session_id} completed")
        return self.repository.close_session(stored.session_id, SessionStatus.COMPLETED.value, now)

    def skip_slot(self, session_id: int, slot: str, now: datetime | None = None) -> PracticeSession:
        """Skip the "new" or "review" slot; the card is released without a rating."""
        now = as_utc(now) if now is not None else utc_now()
        logger.info(f"Session {session_id}: {slot} slot skipped")
        return self._resolve_slot(session_id, slot, SlotStatus.SKIPPED, now)

    def mark_slot_finalized(
        self, session_id: int, card_id: int, now: datetime | None = None
    ) -> PracticeSession:
        """Called once the attempt on a session card has been rated."""
        now = as_utc(now) if now is not None else utc_now()
        stored = self.repository.get_session(session_id)
        slot = stored.slot_for_card(card_id)
        if slot is None:
            raise RecordNotFound(f"Session {session_id} card", card_id)
        return self._resolve_slot(session_id, slot, SlotStatus.FINALIZED, now)

    def complete_session(self, session_id: int, now: datetime | None = None) -> PracticeSession:
        """End a session now; slots still pending count as skipped."""
        now = as_utc(now) if now is not None else utc_now()
        stored = self.repository.get_session(session_id)
        for slot in ("new", "review"):
            if getattr(stored, f"{slot}_slot_status") == SlotStatus.PENDING.value:
                stored = self.repository.set_slot_status(session_id, slot, SlotStatus.SKIPPED.value)
        return self._complete_if_resolved(stored, now)

    def expire_stale_sessions(self, now: datetime | None = None) -> list[int]:
        """Abandon open sessions older than the lock timeout and release their cards."""
        now = as_utc(now) if now is not None else utc_now()
        self.locks.expire_stale(now)
        abandoned = []
        for stored in self.repository.list_open_sessions():
            if now - stored.started_at <= self.locks.timeout:
                continue
            self.locks.release_session(stored.session_id)
            self.repository.close_session(stored.session_id, SessionStatus.ABANDONED.value, now)
            abandoned.append(stored.session_id)
            logger.info(f"Session {stored.session_id} abandoned after lock timeout")
        return abandoned
