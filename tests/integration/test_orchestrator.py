"""
Integration tests for the SessionOrchestrator over in-memory SQLite.
"""

from datetime import timedelta

import pytest

from src.scheduling import CardState, FSRSScheduler, Rating
from src.sessions import (
    CategoryRotationPolicy,
    SessionOrchestrator,
    SessionSignal,
    SessionStatus,
)


def make_due(repository, problem, now, days_ago=10):
    """Rate a problem Good `days_ago` days before now so it is due for review."""
    card = repository.get_or_create_card(problem.problem_id, now - timedelta(days=days_ago))
    reviewed = FSRSScheduler().review(card, Rating.GOOD, now - timedelta(days=days_ago))
    return repository.save_card(reviewed, card.version)


@pytest.fixture
def orchestrator(repository):
    return SessionOrchestrator(repository, lock_timeout=timedelta(minutes=30))


class TestComposition:
    def test_empty_store_yields_empty_plan(self, orchestrator, repository, now):
        plan = orchestrator.build_session(now)

        assert plan.is_empty
        assert plan.signals == {SessionSignal.NO_DUE_CARDS, SessionSignal.NO_NEW_CARDS}
        assert plan.session_id is None
        assert repository.list_open_sessions() == []

    def test_new_only_when_nothing_is_due(self, orchestrator, repository, sample_problems, now):
        plan = orchestrator.build_session(now)

        assert plan.signals == {SessionSignal.NO_DUE_CARDS}
        assert plan.review_card is None
        assert plan.new_card.problem_id == sample_problems[0].problem_id
        assert plan.new_card.card_id is not None
        assert plan.new_card.state == CardState.NEW
        assert repository.get_session(plan.session_id).new_slot_status == "pending"

    def test_review_only_when_no_new_cards(self, orchestrator, repository, sample_problems, now):
        for problem in sample_problems:
            make_due(repository, problem, now)

        plan = orchestrator.build_session(now)

        assert plan.signals == {SessionSignal.NO_NEW_CARDS}
        assert plan.new_card is None
        assert plan.review_card.state == CardState.REVIEW

    def test_pairs_one_new_and_one_due(self, orchestrator, repository, sample_problems, now):
        due = make_due(repository, sample_problems[3], now)  # Sliding Window

        plan = orchestrator.build_session(now)

        assert plan.signals == set()
        assert plan.review_card.card_id == due.card_id
        assert plan.new_card.problem_id == sample_problems[0].problem_id
        assert not plan.interleaved

    def test_interleaving_swaps_same_category_new_card(self, orchestrator, repository, sample_problems, now):
        make_due(repository, sample_problems[4], now)  # Hash Map; first new is two-sum, also Hash Map

        plan = orchestrator.build_session(now)

        assert plan.interleaved
        assert plan.new_card.problem_id == sample_problems[1].problem_id
        assert repository.category_for(plan.new_card.problem_id) != repository.category_for(
            plan.review_card.problem_id
        )

    def test_locked_cards_are_not_offered_twice(self, orchestrator, sample_problems, now):
        first = orchestrator.build_session(now)
        second = orchestrator.build_session(now + timedelta(minutes=1))

        assert first.new_card.card_id != second.new_card.card_id

    def test_preselected_new_problem(self, orchestrator, sample_problems, now):
        chosen = sample_problems[3]
        plan = orchestrator.build_session(now, new_problem_id=chosen.problem_id)
        assert plan.new_card.problem_id == chosen.problem_id

    def test_category_rotation_advances(self, repository, sample_problems, now):
        orchestrator = SessionOrchestrator(
            repository,
            new_card_policy=CategoryRotationPolicy(["Sliding Window", "Two Pointers", "Hash Map"]),
        )
        first = orchestrator.build_session(now)
        second = orchestrator.build_session(now)

        assert repository.category_for(first.new_card.problem_id) == "Sliding Window"
        assert repository.category_for(second.new_card.problem_id) == "Two Pointers"


class TestSlotLifecycle:
    def test_skipping_both_slots_completes_the_session(self, orchestrator, repository, sample_problems, now):
        make_due(repository, sample_problems[3], now)
        plan = orchestrator.build_session(now)

        orchestrator.skip_slot(plan.session_id, "new", now)
        assert not orchestrator.locks.is_locked(plan.new_card.card_id, now)
        assert repository.get_session(plan.session_id).status == "open"

        stored = orchestrator.skip_slot(plan.session_id, "review", now)
        assert stored.status == SessionStatus.COMPLETED.value
        assert stored.ended_at == now

    def test_complete_session_skips_pending_slots(self, orchestrator, repository, sample_problems, now):
        plan = orchestrator.build_session(now)
        stored = orchestrator.complete_session(plan.session_id, now)

        assert stored.status == "completed"
        assert stored.new_slot_status == "skipped"
        assert orchestrator.locks.locked_card_ids(now) == set()

    def test_stale_sessions_are_abandoned(self, orchestrator, repository, sample_problems, now):
        plan = orchestrator.build_session(now)
        later = now + timedelta(minutes=31)

        assert orchestrator.expire_stale_sessions(later) == [plan.session_id]
        assert repository.get_session(plan.session_id).status == "abandoned"

        again = orchestrator.build_session(later)
        assert again.new_card.card_id == plan.new_card.card_id

    def test_locks_survive_a_restart(self, repository, sample_problems, now):
        first = SessionOrchestrator(repository).build_session(now)

        restarted = SessionOrchestrator(repository)

        assert restarted.locks.is_locked(first.new_card.card_id, now + timedelta(minutes=1))
