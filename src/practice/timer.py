"""
Practice timer state.

Time budgets by problem difficulty and a pausable countdown. Rendering is
someone else's job; this module only answers elapsed/remaining/phase.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

DEFAULT_BUDGETS_MINUTES: dict[str, int] = {
    "Easy": 20,
    "Medium": 35,
    "Hard": 50,
    "SystemDesign": 45,
}

WARNING_THRESHOLD = timedelta(minutes=5)


class TimerPhase(str, Enum):
    GREEN = "green"    # more than half the budget left
    YELLOW = "yellow"  # 25-50% left
    RED = "red"        # under 25% left


def budget_ms(difficulty: str, budgets_minutes: dict[str, int] | None = None) -> int:
    """Time budget for a problem difficulty; unknown difficulties get the Medium budget."""
    budgets = budgets_minutes or DEFAULT_BUDGETS_MINUTES
    minutes = budgets.get(difficulty, budgets.get("Medium", DEFAULT_BUDGETS_MINUTES["Medium"]))
    return minutes * 60_000


def phase_for(remaining_ms: int, total_ms: int) -> TimerPhase:
    if total_ms <= 0:
        return TimerPhase.RED
    fraction = remaining_ms / total_ms
    if fraction > 0.5:
        return TimerPhase.GREEN
    if fraction >= 0.25:
        return TimerPhase.YELLOW
    return TimerPhase.RED


@dataclass
class TimerResult:
    elapsed_ms: int
    budget_ms: int
    expired: bool
    phase: TimerPhase


class PracticeTimer:
    """Countdown over an explicit clock; every method takes `now`."""

    def __init__(self, duration_ms: int, started_at: datetime):
        if duration_ms <= 0:
            raise ValueError("Timer duration must be positive")
        self.duration_ms = duration_ms
        self.started_at = started_at
        self._paused_at: datetime | None = None
        self._paused_total = timedelta(0)
        self._stopped: TimerResult | None = None

    @property
    def is_paused(self) -> bool:
        return self._paused_at is not None

    def pause(self, now: datetime) -> None:
        if self._paused_at is None and self._stopped is None:
            self._paused_at = now

    def resume(self, now: datetime) -> None:
        if self._paused_at is not None:
            self._paused_total += now - self._paused_at
            self._paused_at = None

    def elapsed_ms(self, now: datetime) -> int:
        if self._stopped is not None:
            return self._stopped.elapsed_ms
        end = self._paused_at or now
        elapsed = end - self.started_at - self._paused_total
        return max(0, int(elapsed.total_seconds() * 1000))

    def remaining_ms(self, now: datetime) -> int:
        return max(0, self.duration_ms - self.elapsed_ms(now))

    def phase(self, now: datetime) -> TimerPhase:
        return phase_for(self.remaining_ms(now), self.duration_ms)

    def is_warning(self, now: datetime) -> bool:
        """Five minutes or less left, not yet expired."""
        remaining = self.remaining_ms(now)
        return 0 < remaining <= WARNING_THRESHOLD.total_seconds() * 1000

    def is_expired(self, now: datetime) -> bool:
        return self.remaining_ms(now) == 0

    def stop(self, now: datetime) -> TimerResult:
        if self._stopped is None:
            self.resume(now)
            elapsed = self.elapsed_ms(now)
            self._stopped = TimerResult(
                elapsed_ms=elapsed,
                budget_ms=self.duration_ms,
                expired=elapsed >= self.duration_ms,
                phase=phase_for(max(0, self.duration_ms - elapsed), self.duration_ms),
            )
        return self._stopped
