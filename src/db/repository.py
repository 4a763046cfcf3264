"""
SQLAlchemy-backed repository for CodeDrill.

Provides persistence for:
- Problem metadata (category/pattern for interleaving, difficulty for budgets)
- FSRS card state with optimistic versioning
- Attempt history, review logs and session records
- Key-value user config (mutation rotation counters, ...)

Every public method runs in its own transaction; storage-engine failures are
raised as PersistenceError.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.errors import (
    AttemptFinalized,
    PersistenceError,
    RecordNotFound,
    VersionConflict,
)
from src.db.database import Database
from src.db.models import (
    AttemptRecord,
    ProblemRecord,
    ReviewCardRecord,
    ReviewLogRecord,
    SessionRecord,
    UserConfigEntry,
)
from src.scheduling.models import Card, CardState, CardType, Rating, ReviewLog, as_utc

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Problem:
    """Problem metadata needed by scheduling and timers."""

    problem_id: int
    slug: str
    title: str
    difficulty: str
    category: str
    pattern: str | None = None

    @property
    def interleave_category(self) -> str:
        """Pattern when known, otherwise the broad category."""
        return self.pattern or self.category


@dataclass(frozen=True)
class Attempt:
    """One practice attempt. Immutable once `rating` is set."""

    attempt_id: int
    problem_id: int
    card_id: int
    ordinal: int
    started_at: datetime
    session_id: int | None = None
    finished_at: datetime | None = None
    time_spent_ms: int | None = None
    time_budget_ms: int | None = None
    rating: int | None = None
    was_mutation: bool = False
    mutation_class: str | None = None
    mutation_desc: str | None = None
    mutation_degraded: bool = False
    user_code: str | None = None
    ai_hints_used: int = 0
    gave_up: bool = False
    timer_expired: bool = False
    notes: str | None = None

    @property
    def is_finalized(self) -> bool:
        return self.rating is not None


@dataclass(frozen=True)
class PracticeSession:
    """A stored session: one new-card slot and one review-card slot."""

    session_id: int
    started_at: datetime
    status: str = "open"
    ended_at: datetime | None = None
    new_card_id: int | None = None
    new_problem_id: int | None = None
    new_slot_status: str | None = None
    review_card_id: int | None = None
    review_problem_id: int | None = None
    review_slot_status: str | None = None

    @property
    def card_ids(self) -> list[int]:
        return [cid for cid in (self.new_card_id, self.review_card_id) if cid is not None]

    def slot_for_card(self, card_id: int) -> str | None:
        if card_id == self.new_card_id:
            return "new"
        if card_id == self.review_card_id:
            return "review"
        return None


@dataclass(frozen=True)
class CategoryStat:
    """Per-category progress: problems known, attempted, solved (rated Good or Easy)."""

    category: str
    total: int
    attempted: int
    solved: int


# =============================================================================
# Row conversion
# =============================================================================


def _to_problem(row: ProblemRecord) -> Problem:
    return Problem(
        problem_id=row.id,
        slug=row.slug,
        title=row.title,
        difficulty=row.difficulty,
        category=row.category,
        pattern=row.pattern,
    )


def _to_card(row: ReviewCardRecord) -> Card:
    return Card(
        card_id=row.id,
        problem_id=row.problem_id,
        card_type=CardType(row.card_type),
        stability=row.stability,
        difficulty=row.difficulty,
        due=as_utc(row.due),
        last_review=as_utc(row.last_review),
        reps=row.reps,
        lapses=row.lapses,
        state=CardState(row.state),
        scheduled_days=row.scheduled_days,
        elapsed_days=row.elapsed_days,
        version=row.version,
    )


def _to_attempt(row: AttemptRecord) -> Attempt:
    return Attempt(
        attempt_id=row.id,
        problem_id=row.problem_id,
        card_id=row.card_id,
        ordinal=row.ordinal,
        started_at=as_utc(row.started_at),
        session_id=row.session_id,
        finished_at=as_utc(row.finished_at),
        time_spent_ms=row.time_spent_ms,
        time_budget_ms=row.time_budget_ms,
        rating=row.rating,
        was_mutation=row.was_mutation,
        mutation_class=row.mutation_class,
        mutation_desc=row.mutation_desc,
        mutation_degraded=row.mutation_degraded,
        user_code=row.user_code,
        ai_hints_used=row.ai_hints_used,
        gave_up=row.gave_up,
        timer_expired=row.timer_expired,
        notes=row.notes,
    )


def _to_session(row: SessionRecord) -> PracticeSession:
    return PracticeSession(
        session_id=row.id,
        started_at=as_utc(row.started_at),
        status=row.status,
        ended_at=as_utc(row.ended_at),
        new_card_id=row.new_card_id,
        new_problem_id=row.new_problem_id,
        new_slot_status=row.new_slot_status,
        review_card_id=row.review_card_id,
        review_problem_id=row.review_problem_id,
        review_slot_status=row.review_slot_status,
    )


def card_fields(card: Card) -> dict[str, Any]:
    """Column values for the scheduling state of a card (version excluded)."""
    return {
        "stability": card.stability,
        "difficulty": card.difficulty,
        "due": as_utc(card.due),
        "last_review": as_utc(card.last_review),
        "reps": card.reps,
        "lapses": card.lapses,
        "state": card.state.value,
        "scheduled_days": card.scheduled_days,
        "elapsed_days": card.elapsed_days,
    }


# =============================================================================
# Repository
# =============================================================================


class Repository:
    """
    Persistence boundary for cards, attempts, sessions and problems.

    Card writes go through `update_card`, which compares the stored version
    inside the UPDATE statement itself and raises VersionConflict when the
    caller's read is stale.
    """

    def __init__(self, db: Database):
        self.db = db

    @contextmanager
    def _scope(self) -> Generator[Session, None, None]:
        try:
            with self.db.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Storage failure: {e}")
            raise PersistenceError(str(e)) from e

    # =========================================================================
    # Problems
    # =========================================================================

    def add_problem(
        self,
        slug: str,
        title: str,
        category: str,
        difficulty: str = "Medium",
        pattern: str | None = None,
    ) -> Problem:
        """
        Register problem metadata.

        Returns the existing row unchanged when the slug is already known.
        """
        with self._scope() as session:
            existing = session.scalar(select(ProblemRecord).where(ProblemRecord.slug == slug))
            if existing is not None:
                logger.info(f"Problem {slug} already registered as #{existing.id}")
                return _to_problem(existing)
            row = ProblemRecord(
                slug=slug, title=title, category=category, difficulty=difficulty, pattern=pattern
            )
            session.add(row)
            session.flush()
            logger.info(f"Added problem #{row.id} {slug} ({difficulty}, {pattern or category})")
            return _to_problem(row)

    def get_problem(self, problem_id: int) -> Problem:
        with self._scope() as session:
            row = session.get(ProblemRecord, problem_id)
            if row is None:
                raise RecordNotFound("Problem", problem_id)
            return _to_problem(row)

    def get_problem_by_slug(self, slug: str) -> Problem | None:
        with self._scope() as session:
            row = session.scalar(select(ProblemRecord).where(ProblemRecord.slug == slug))
            return _to_problem(row) if row is not None else None

    def list_problems(self) -> list[Problem]:
        with self._scope() as session:
            rows = session.scalars(select(ProblemRecord).order_by(ProblemRecord.id)).all()
            return [_to_problem(r) for r in rows]

    def category_for(self, problem_id: int) -> str:
        """Interleaving category: the problem's pattern, falling back to its category."""
        return self.get_problem(problem_id).interleave_category

    def category_stats(self) -> list[CategoryStat]:
        """Problems per category with how many were attempted and solved."""
        solved_problem = case((AttemptRecord.rating >= 3, AttemptRecord.problem_id))
        with self._scope() as session:
            rows = session.execute(
                select(
                    ProblemRecord.category,
                    func.count(ProblemRecord.id.distinct()),
                    func.count(AttemptRecord.problem_id.distinct()),
                    func.count(solved_problem.distinct()),
                )
                .outerjoin(AttemptRecord, AttemptRecord.problem_id == ProblemRecord.id)
                .group_by(ProblemRecord.category)
                .order_by(ProblemRecord.category)
            ).all()
            return [
                CategoryStat(category=r[0], total=r[1], attempted=r[2], solved=r[3]) for r in rows
            ]

    # =========================================================================
    # Cards
    # =========================================================================

    def get_or_create_card(
        self, problem_id: int, now: datetime, card_type: CardType = CardType.DSA
    ) -> Card:
        """
        Get the card for a problem, creating a New card on first exposure.

        Args:
            problem_id: The problem identifier
            now: Creation instant (becomes the card's initial due)
            card_type: Review track

        Returns:
            The stored Card
        """
        with self._scope() as session:
            row = session.scalar(
                select(ReviewCardRecord).where(
                    ReviewCardRecord.problem_id == problem_id,
                    ReviewCardRecord.card_type == card_type.value,
                )
            )
            if row is None:
                if session.get(ProblemRecord, problem_id) is None:
                    raise RecordNotFound("Problem", problem_id)
                row = ReviewCardRecord(
                    problem_id=problem_id,
                    card_type=card_type.value,
                    due=as_utc(now),
                    state=CardState.NEW.value,
                )
                session.add(row)
                session.flush()
                logger.debug(f"Created New card #{row.id} for problem {problem_id} ({card_type.value})")
            return _to_card(row)

    def get_card(self, card_id: int) -> Card:
        with self._scope() as session:
            row = session.get(ReviewCardRecord, card_id)
            if row is None:
                raise RecordNotFound("Card", card_id)
            return _to_card(row)

    def get_card_for_problem(
        self, problem_id: int, card_type: CardType = CardType.DSA
    ) -> Card | None:
        with self._scope() as session:
            row = session.scalar(
                select(ReviewCardRecord).where(
                    ReviewCardRecord.problem_id == problem_id,
                    ReviewCardRecord.card_type == card_type.value,
                )
            )
            return _to_card(row) if row is not None else None

    def list_cards(self, card_type: CardType | None = None) -> list[Card]:
        with self._scope() as session:
            stmt = select(ReviewCardRecord).order_by(ReviewCardRecord.id)
            if card_type is not None:
                stmt = stmt.where(ReviewCardRecord.card_type == card_type.value)
            return [_to_card(r) for r in session.scalars(stmt).all()]

    def list_due_cards(self, now: datetime, card_type: CardType | None = None) -> list[Card]:
        """
        Seen cards with due <= now.

        Ordered by earliest due, then more lapses, then older last review.
        """
        with self._scope() as session:
            stmt = (
                select(ReviewCardRecord)
                .where(
                    ReviewCardRecord.state != CardState.NEW.value,
                    ReviewCardRecord.due <= as_utc(now),
                )
                .order_by(
                    ReviewCardRecord.due.asc(),
                    ReviewCardRecord.lapses.desc(),
                    ReviewCardRecord.last_review.asc(),
                    ReviewCardRecord.id.asc(),
                )
            )
            if card_type is not None:
                stmt = stmt.where(ReviewCardRecord.card_type == card_type.value)
            return [_to_card(r) for r in session.scalars(stmt).all()]

    def list_new_cards(self, card_type: CardType | None = None) -> list[Card]:
        """New cards in insertion order."""
        with self._scope() as session:
            stmt = (
                select(ReviewCardRecord)
                .where(ReviewCardRecord.state == CardState.NEW.value)
                .order_by(ReviewCardRecord.id.asc())
            )
            if card_type is not None:
                stmt = stmt.where(ReviewCardRecord.card_type == card_type.value)
            return [_to_card(r) for r in session.scalars(stmt).all()]

    def list_unexposed_problems(self, card_type: CardType | None = None) -> list[Problem]:
        """Problems that have no card yet (of the given type, or of any type)."""
        with self._scope() as session:
            card_exists = select(ReviewCardRecord.id).where(
                ReviewCardRecord.problem_id == ProblemRecord.id
            )
            if card_type is not None:
                card_exists = card_exists.where(ReviewCardRecord.card_type == card_type.value)
            rows = session.scalars(
                select(ProblemRecord).where(~card_exists.exists()).order_by(ProblemRecord.id)
            ).all()
            return [_to_problem(r) for r in rows]

    def _update_card(
        self, session: Session, card_id: int, expected_version: int, fields: dict[str, Any]
    ) -> int:
        result = session.execute(
            update(ReviewCardRecord)
            .where(ReviewCardRecord.id == card_id, ReviewCardRecord.version == expected_version)
            .values(**fields, version=expected_version + 1)
        )
        if result.rowcount == 0:
            if session.get(ReviewCardRecord, card_id) is None:
                raise RecordNotFound("Card", card_id)
            raise VersionConflict(card_id, expected_version)
        return expected_version + 1

    def update_card(self, card_id: int, expected_version: int, fields: dict[str, Any]) -> int:
        """
        Conditionally write card fields.

        Args:
            card_id: Card to update
            expected_version: Version the caller's copy was read at
            fields: Column values to write

        Returns:
            The new version

        Raises:
            VersionConflict: the stored version no longer matches
        """
        with self._scope() as session:
            return self._update_card(session, card_id, expected_version, fields)

    def save_card(self, card: Card, expected_version: int) -> Card:
        """Persist a scheduler result; returns it stamped with the new version."""
        if card.card_id is None:
            raise RecordNotFound("Card", None)
        version = self.update_card(card.card_id, expected_version, card_fields(card))
        return _with_version(card, version)

    def reset_card_to_new(self, card_id: int, expected_version: int, now: datetime) -> Card:
        """Return a corrupt card to New so it can be scheduled from scratch."""
        fields = {
            "stability": 0.0,
            "difficulty": 0.0,
            "due": as_utc(now),
            "last_review": None,
            "reps": 0,
            "lapses": 0,
            "state": CardState.NEW.value,
            "scheduled_days": 0,
            "elapsed_days": 0,
        }
        with self._scope() as session:
            self._update_card(session, card_id, expected_version, fields)
            logger.warning(f"Card {card_id} reset to New")
            return _to_card(session.get(ReviewCardRecord, card_id))

    # =========================================================================
    # Attempts
    # =========================================================================

    def insert_attempt(
        self,
        problem_id: int,
        card_id: int,
        started_at: datetime,
        session_id: int | None = None,
        time_budget_ms: int | None = None,
        was_mutation: bool = False,
        mutation_class: str | None = None,
    ) -> Attempt:
        """Store a new attempt with the next per-problem ordinal."""
        with self._scope() as session:
            count = session.scalar(
                select(func.count(AttemptRecord.id)).where(AttemptRecord.problem_id == problem_id)
            )
            row = AttemptRecord(
                problem_id=problem_id,
                card_id=card_id,
                session_id=session_id,
                ordinal=(count or 0) + 1,
                started_at=as_utc(started_at),
                time_budget_ms=time_budget_ms,
                was_mutation=was_mutation,
                mutation_class=mutation_class,
            )
            session.add(row)
            session.flush()
            return _to_attempt(row)

    def get_attempt(self, attempt_id: int) -> Attempt:
        with self._scope() as session:
            row = session.get(AttemptRecord, attempt_id)
            if row is None:
                raise RecordNotFound("Attempt", attempt_id)
            return _to_attempt(row)

    def get_open_attempt(self, card_id: int) -> Attempt | None:
        """The unrated attempt on a card, if any."""
        with self._scope() as session:
            row = session.scalar(
                select(AttemptRecord)
                .where(AttemptRecord.card_id == card_id, AttemptRecord.rating.is_(None))
                .order_by(AttemptRecord.id.desc())
            )
            return _to_attempt(row) if row is not None else None

    def count_attempts(self, problem_id: int) -> int:
        with self._scope() as session:
            return session.scalar(
                select(func.count(AttemptRecord.id)).where(AttemptRecord.problem_id == problem_id)
            ) or 0

    def list_attempts(self, problem_id: int) -> list[Attempt]:
        with self._scope() as session:
            rows = session.scalars(
                select(AttemptRecord)
                .where(AttemptRecord.problem_id == problem_id)
                .order_by(AttemptRecord.ordinal)
            ).all()
            return [_to_attempt(r) for r in rows]

    def _open_attempt_row(self, session: Session, attempt_id: int) -> AttemptRecord:
        row = session.get(AttemptRecord, attempt_id)
        if row is None:
            raise RecordNotFound("Attempt", attempt_id)
        if row.rating is not None:
            raise AttemptFinalized(attempt_id)
        return row

    def set_mutation_description(self, attempt_id: int, description: str) -> Attempt:
        with self._scope() as session:
            row = self._open_attempt_row(session, attempt_id)
            row.mutation_desc = description
            return _to_attempt(row)

    def mark_attempt_degraded(self, attempt_id: int) -> Attempt:
        """Flag that the mutation collaborator failed; the attempt runs on original content."""
        with self._scope() as session:
            row = self._open_attempt_row(session, attempt_id)
            row.mutation_degraded = True
            return _to_attempt(row)

    def record_hint(self, attempt_id: int) -> int:
        """Increment the AI hint counter; returns the new count."""
        with self._scope() as session:
            row = self._open_attempt_row(session, attempt_id)
            row.ai_hints_used += 1
            return row.ai_hints_used

    def update_attempt_metadata(self, attempt_id: int, **fields: Any) -> Attempt:
        """
        Record non-scheduling metadata (user_code, notes, gave_up, timer_expired,
        finished_at, time_spent_ms) on an open attempt.
        """
        allowed = {"user_code", "notes", "gave_up", "timer_expired", "finished_at", "time_spent_ms"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown attempt fields: {sorted(unknown)}")
        with self._scope() as session:
            row = self._open_attempt_row(session, attempt_id)
            for name, value in fields.items():
                if name == "finished_at":
                    value = as_utc(value)
                setattr(row, name, value)
            return _to_attempt(row)

    def record_review(
        self,
        attempt_id: int,
        card: Card,
        expected_version: int,
        log: ReviewLog,
        finished_at: datetime,
        time_spent_ms: int | None = None,
        gave_up: bool = False,
        timer_expired: bool = False,
        user_code: str | None = None,
        notes: str | None = None,
    ) -> tuple[Attempt, Card]:
        """
        Finalize an attempt and persist the scheduling result atomically.

        The attempt's rating, the conditional card update and the review log
        are written in one transaction; a VersionConflict rolls back all of it.
        """
        if card.card_id is None:
            raise RecordNotFound("Card", None)
        with self._scope() as session:
            row = self._open_attempt_row(session, attempt_id)
            version = self._update_card(session, card.card_id, expected_version, card_fields(card))

            row.rating = int(log.rating)
            row.finished_at = as_utc(finished_at)
            row.time_spent_ms = time_spent_ms
            row.gave_up = gave_up or row.gave_up
            row.timer_expired = timer_expired or row.timer_expired
            if user_code is not None:
                row.user_code = user_code
            if notes is not None:
                row.notes = notes

            session.add(
                ReviewLogRecord(
                    card_id=card.card_id,
                    attempt_id=attempt_id,
                    rating=int(log.rating),
                    state_before=log.state_before.value,
                    state_after=log.state_after.value,
                    stability_before=log.stability_before,
                    stability_after=log.stability_after,
                    difficulty_before=log.difficulty_before,
                    difficulty_after=log.difficulty_after,
                    retrievability=log.retrievability,
                    elapsed_days=log.elapsed_days,
                    scheduled_days=log.scheduled_days,
                    reviewed_at=as_utc(log.reviewed_at),
                )
            )
            session.flush()
            return _to_attempt(row), _with_version(card, version)

    def list_review_logs(self, card_id: int) -> list[ReviewLog]:
        with self._scope() as session:
            rows = session.scalars(
                select(ReviewLogRecord)
                .where(ReviewLogRecord.card_id == card_id)
                .order_by(ReviewLogRecord.id)
            ).all()
            problem_id = session.get(ReviewCardRecord, card_id).problem_id if rows else 0
            return [
                ReviewLog(
                    card_id=r.card_id,
                    problem_id=problem_id,
                    rating=Rating(r.rating),
                    state_before=CardState(r.state_before),
                    state_after=CardState(r.state_after),
                    stability_before=r.stability_before,
                    stability_after=r.stability_after,
                    difficulty_before=r.difficulty_before,
                    difficulty_after=r.difficulty_after,
                    retrievability=r.retrievability,
                    elapsed_days=r.elapsed_days,
                    scheduled_days=r.scheduled_days,
                    reviewed_at=as_utc(r.reviewed_at),
                )
                for r in rows
            ]

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(
        self,
        started_at: datetime,
        new_card: Card | None = None,
        review_card: Card | None = None,
    ) -> PracticeSession:
        with self._scope() as session:
            row = SessionRecord(
                started_at=as_utc(started_at),
                status="open",
                new_card_id=new_card.card_id if new_card else None,
                new_problem_id=new_card.problem_id if new_card else None,
                new_slot_status="pending" if new_card else None,
                review_card_id=review_card.card_id if review_card else None,
                review_problem_id=review_card.problem_id if review_card else None,
                review_slot_status="pending" if review_card else None,
            )
            session.add(row)
            session.flush()
            return _to_session(row)

    def get_session(self, session_id: int) -> PracticeSession:
        with self._scope() as session:
            row = session.get(SessionRecord, session_id)
            if row is None:
                raise RecordNotFound("Session", session_id)
            return _to_session(row)

    def list_open_sessions(self) -> list[PracticeSession]:
        with self._scope() as session:
            rows = session.scalars(
                select(SessionRecord)
                .where(SessionRecord.status == "open")
                .order_by(SessionRecord.started_at)
            ).all()
            return [_to_session(r) for r in rows]

    def set_slot_status(self, session_id: int, slot: str, status: str) -> PracticeSession:
        if slot not in ("new", "review"):
            raise ValueError(f"Unknown session slot: {slot}")
        with self._scope() as session:
            row = session.get(SessionRecord, session_id)
            if row is None:
                raise RecordNotFound("Session", session_id)
            setattr(row, f"{slot}_slot_status", status)
            return _to_session(row)

    def close_session(self, session_id: int, status: str, ended_at: datetime) -> PracticeSession:
        with self._scope() as session:
            row = session.get(SessionRecord, session_id)
            if row is None:
                raise RecordNotFound("Session", session_id)
            row.status = status
            row.ended_at = as_utc(ended_at)
            return _to_session(row)

    # =========================================================================
    # User config
    # =========================================================================

    def get_config(self, key: str, default: str | None = None) -> str | None:
        with self._scope() as session:
            row = session.get(UserConfigEntry, key)
            return row.value if row is not None else default

    def set_config(self, key: str, value: str) -> None:
        with self._scope() as session:
            row = session.get(UserConfigEntry, key)
            if row is None:
                session.add(UserConfigEntry(key=key, value=value))
            else:
                row.value = value


def _with_version(card: Card, version: int) -> Card:
    return replace(card, version=version)
