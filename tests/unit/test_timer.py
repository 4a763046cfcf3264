"""
Unit tests for time budgets and the practice timer.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.practice.timer import PracticeTimer, TimerPhase, budget_ms, phase_for

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestBudgets:
    @pytest.mark.parametrize(
        "difficulty,minutes",
        [("Easy", 20), ("Medium", 35), ("Hard", 50), ("SystemDesign", 45)],
    )
    def test_default_budgets(self, difficulty, minutes):
        assert budget_ms(difficulty) == minutes * 60_000

    def test_unknown_difficulty_uses_medium(self):
        assert budget_ms("Unrated") == 35 * 60_000

    def test_custom_budgets(self):
        assert budget_ms("Easy", {"Easy": 15, "Medium": 30}) == 15 * 60_000


class TestPhase:
    def test_phase_boundaries(self):
        assert phase_for(60, 100) == TimerPhase.GREEN
        assert phase_for(50, 100) == TimerPhase.YELLOW
        assert phase_for(25, 100) == TimerPhase.YELLOW
        assert phase_for(24, 100) == TimerPhase.RED


class TestPracticeTimer:
    def test_elapsed_and_remaining(self):
        timer = PracticeTimer(20 * 60_000, NOW)
        at = NOW + timedelta(minutes=12)
        assert timer.elapsed_ms(at) == 12 * 60_000
        assert timer.remaining_ms(at) == 8 * 60_000
        assert timer.phase(at) == TimerPhase.YELLOW

    def test_pause_excludes_paused_time(self):
        timer = PracticeTimer(20 * 60_000, NOW)
        timer.pause(NOW + timedelta(minutes=5))
        assert timer.elapsed_ms(NOW + timedelta(minutes=9)) == 5 * 60_000
        timer.resume(NOW + timedelta(minutes=10))
        assert timer.elapsed_ms(NOW + timedelta(minutes=11)) == 6 * 60_000

    def test_warning_and_expiry(self):
        timer = PracticeTimer(20 * 60_000, NOW)
        assert not timer.is_warning(NOW + timedelta(minutes=10))
        assert timer.is_warning(NOW + timedelta(minutes=16))
        assert timer.is_expired(NOW + timedelta(minutes=20))

    def test_stop_freezes_result(self):
        timer = PracticeTimer(20 * 60_000, NOW)
        result = timer.stop(NOW + timedelta(minutes=25))
        assert result.expired
        assert result.phase == TimerPhase.RED
        assert timer.elapsed_ms(NOW + timedelta(hours=2)) == 25 * 60_000
