"""
Attempt, session and user-config models.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class AttemptRecord(Base):
    """
    Every practice attempt on a problem.

    Rated attempts are immutable; the repository refuses to change them.
    """

    __tablename__ = "attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    problem_id: Mapped[int] = mapped_column(
        ForeignKey("problems.id", ondelete="CASCADE"), nullable=False
    )
    card_id: Mapped[int] = mapped_column(
        ForeignKey("review_cards.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[int | None] = mapped_column(ForeignKey("sessions.id"))
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based per problem

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    time_spent_ms: Mapped[int | None] = mapped_column(Integer)
    time_budget_ms: Mapped[int | None] = mapped_column(Integer)
    rating: Mapped[int | None] = mapped_column(Integer)

    was_mutation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mutation_class: Mapped[str | None] = mapped_column(String(32))
    mutation_desc: Mapped[str | None] = mapped_column(Text)
    mutation_degraded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user_code: Mapped[str | None] = mapped_column(Text)
    ai_hints_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gave_up: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timer_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("problem_id", "ordinal", name="uq_attempt_problem_ordinal"),
        CheckConstraint("rating IS NULL OR rating BETWEEN 1 AND 4", name="ck_attempt_rating"),
        Index("idx_attempts_problem", "problem_id"),
        Index("idx_attempts_card", "card_id"),
        Index("idx_attempts_started", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<AttemptRecord {self.id} problem={self.problem_id} #{self.ordinal} rating={self.rating}>"


class SessionRecord(Base):
    """A new-card slot and a review-card slot practiced together."""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")

    new_card_id: Mapped[int | None] = mapped_column(ForeignKey("review_cards.id"))
    new_problem_id: Mapped[int | None] = mapped_column(ForeignKey("problems.id"))
    new_slot_status: Mapped[str | None] = mapped_column(String(16))

    review_card_id: Mapped[int | None] = mapped_column(ForeignKey("review_cards.id"))
    review_problem_id: Mapped[int | None] = mapped_column(ForeignKey("problems.id"))
    review_slot_status: Mapped[str | None] = mapped_column(String(16))

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'completed', 'abandoned')", name="ck_session_status"
        ),
        Index("idx_sessions_started", "started_at"),
        Index("idx_sessions_status", "status"),
    )

    @property
    def completed(self) -> bool:
        return self.status == "completed"


class UserConfigEntry(Base):
    """Key-value store for runtime state (e.g. mutation rotation counters)."""

    __tablename__ = "user_config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text)
