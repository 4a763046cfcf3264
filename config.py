"""
Configuration settings for the CodeDrill scheduling core.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path.home() / ".codedrill"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DATA_DIR / 'codedrill.db'}",
        description="SQLAlchemy connection string for card/attempt/session storage",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # FSRS Settings (spaced repetition)
    # ========================================
    fsrs_request_retention: float = Field(
        default=0.9,
        gt=0.0,
        lt=1.0,
        description="Target retention used to turn stability into an interval",
    )
    fsrs_maximum_interval: int = Field(
        default=365,
        ge=1,
        description="Longest interval between reviews (days)",
    )
    fsrs_minimum_interval: int = Field(
        default=1,
        ge=1,
        description="Shortest day-based interval once a card graduates",
    )
    fsrs_enable_fuzz: bool = Field(
        default=True,
        description="Spread due dates of similar cards with a seeded fuzz",
    )
    fsrs_learning_step_minutes: int = Field(
        default=10,
        ge=1,
        description="Sub-day step for cards still in Learning",
    )
    fsrs_relearning_step_minutes: int = Field(
        default=10,
        ge=1,
        description="Sub-day step after a lapse",
    )
    scheduling_max_retries: int = Field(
        default=3,
        ge=1,
        description="Re-read/retry budget when a card update hits a version conflict",
    )

    # ========================================
    # Problem Mutation
    # ========================================
    mutation_threshold: int = Field(
        default=3,
        ge=1,
        description="Attempt number from which a problem is presented mutated",
    )
    mutation_policy: Literal["round_robin", "weighted"] = Field(
        default="round_robin",
        description="How the mutation class is chosen for each mutated attempt",
    )
    mutation_service_url: str | None = Field(
        default=None,
        description="Content-mutation service base URL (None disables requests)",
    )
    mutation_timeout_ms: int = Field(
        default=30000,
        description="Mutation request timeout in milliseconds",
    )
    mutation_workers: int = Field(
        default=2,
        ge=1,
        description="Background workers for mutation requests",
    )

    # ========================================
    # Sessions
    # ========================================
    session_lock_timeout_minutes: int = Field(
        default=180,
        ge=1,
        description="Minutes after which an unfinished session is treated as abandoned",
    )
    new_card_order: Literal["insertion", "category_rotation"] = Field(
        default="insertion",
        description="Ordering policy for the new-card slot",
    )
    category_rotation: str = Field(
        default="",
        description="Comma-separated category/pattern rotation for new cards",
    )

    # ========================================
    # Timer Budgets (minutes)
    # ========================================
    timer_easy_minutes: int = Field(default=20, ge=1)
    timer_medium_minutes: int = Field(default=35, ge=1)
    timer_hard_minutes: int = Field(default=50, ge=1)
    timer_system_design_minutes: int = Field(default=45, ge=1)

    # ========================================
    # Helper Methods
    # ========================================
    def get_category_rotation(self) -> list[str]:
        """Return the configured category rotation as a list."""
        return [c.strip() for c in self.category_rotation.split(",") if c.strip()]

    def get_timer_budgets_minutes(self) -> dict[str, int]:
        """Return timer budgets keyed by problem difficulty."""
        return {
            "Easy": self.timer_easy_minutes,
            "Medium": self.timer_medium_minutes,
            "Hard": self.timer_hard_minutes,
            "SystemDesign": self.timer_system_design_minutes,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
