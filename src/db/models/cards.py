"""
Problem metadata, review card and review log models.

Cards are never deleted; review logs keep the full rating history for
analytics.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class ProblemRecord(Base):
    """
    Minimal problem metadata.

    Problem statements live with the content collaborator; only what the
    scheduler needs (category/pattern for interleaving, difficulty for the
    time budget) is stored here.
    """

    __tablename__ = "problems"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="Medium")
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    pattern: Mapped[str | None] = mapped_column(String(128))  # "Sliding Window", "Two Pointers", ...
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    cards: Mapped[list[ReviewCardRecord]] = relationship(back_populates="problem")

    __table_args__ = (
        CheckConstraint(
            "difficulty IN ('Easy', 'Medium', 'Hard', 'SystemDesign')", name="ck_problem_difficulty"
        ),
        Index("idx_problems_category", "category"),
        Index("idx_problems_pattern", "pattern"),
    )

    def __repr__(self) -> str:
        return f"<ProblemRecord {self.id} {self.slug}>"


class ReviewCardRecord(Base):
    """FSRS state per (problem, card type)."""

    __tablename__ = "review_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    problem_id: Mapped[int] = mapped_column(
        ForeignKey("problems.id", ondelete="CASCADE"), nullable=False
    )
    card_type: Mapped[str] = mapped_column(String(32), nullable=False, default="dsa")

    # FSRS memory model
    stability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    difficulty: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    due: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_review: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lapses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="New")

    # Scheduling metadata
    scheduled_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    elapsed_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    problem: Mapped[ProblemRecord] = relationship(back_populates="cards")

    __table_args__ = (
        UniqueConstraint("problem_id", "card_type", name="uq_card_problem_type"),
        CheckConstraint("card_type IN ('dsa', 'system_design')", name="ck_card_type"),
        CheckConstraint(
            "state IN ('New', 'Learning', 'Review', 'Relearning')", name="ck_card_state"
        ),
        Index("idx_review_cards_due", "due"),
        Index("idx_review_cards_state", "state"),
    )

    def __repr__(self) -> str:
        return f"<ReviewCardRecord {self.id} problem={self.problem_id} state={self.state} v{self.version}>"


class ReviewLogRecord(Base):
    """One applied rating, with state before and after."""

    __tablename__ = "review_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_id: Mapped[int] = mapped_column(
        ForeignKey("review_cards.id", ondelete="CASCADE"), nullable=False
    )
    attempt_id: Mapped[int | None] = mapped_column(ForeignKey("attempts.id"))
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    state_before: Mapped[str] = mapped_column(String(16), nullable=False)
    state_after: Mapped[str] = mapped_column(String(16), nullable=False)
    stability_before: Mapped[float] = mapped_column(Float, nullable=False)
    stability_after: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty_before: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty_after: Mapped[float] = mapped_column(Float, nullable=False)
    retrievability: Mapped[float | None] = mapped_column(Float)
    elapsed_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scheduled_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 4", name="ck_review_log_rating"),
        Index("idx_review_logs_card", "card_id"),
        Index("idx_review_logs_reviewed", "reviewed_at"),
    )
