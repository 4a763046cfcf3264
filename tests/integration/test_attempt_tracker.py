"""
Integration tests for the AttemptTracker over in-memory SQLite.
"""

from datetime import timedelta

import pytest

from src.core.errors import (
    AttemptFinalized,
    AttemptInProgress,
    InvalidRating,
    MutationRequestFailed,
    VersionConflict,
)
from src.db.repository import Repository
from src.practice import AttemptTracker, MutationClass, MutationResult
from src.scheduling import CardState, Rating


class StubMutationClient:
    """Records requests; optionally fails every one of them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests = []

    def request_mutation(self, request):
        self.requests.append(request)
        if self.fail:
            raise MutationRequestFailed(request.problem_id, "service down")
        return MutationResult(
            attempt_id=request.attempt_id,
            description=f"{request.mutation_class.value} variant of problem {request.problem_id}",
        )


class ConflictingRepository(Repository):
    """Raises VersionConflict from record_review a fixed number of times."""

    def __init__(self, db, conflicts: int):
        super().__init__(db)
        self.conflicts = conflicts
        self.calls = 0

    def record_review(self, attempt_id, card, expected_version, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.conflicts:
            raise VersionConflict(card.card_id, expected_version)
        return super().record_review(attempt_id, card, expected_version, *args, **kwargs)


@pytest.fixture
def tracker(repository):
    tracker = AttemptTracker(repository)
    yield tracker
    tracker.close()


def rated_attempts(tracker, problem_id, now, count):
    """Run `count` complete Good attempts on a problem, a day apart."""
    attempts = []
    for i in range(count):
        at = now + timedelta(days=i * 7)
        attempt = tracker.start_attempt(problem_id, at)
        tracker.submit_rating(attempt.attempt_id, Rating.GOOD, at + timedelta(minutes=20))
        attempts.append(attempt)
    return attempts


class TestStartAttempt:
    def test_first_attempt(self, tracker, repository, sample_problems, now):
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)

        assert attempt.ordinal == 1
        assert attempt.was_mutation is False
        assert attempt.time_budget_ms == 20 * 60_000  # Easy
        assert repository.get_card(attempt.card_id).state == CardState.NEW

    def test_one_open_attempt_per_card(self, tracker, sample_problems, now):
        tracker.start_attempt(sample_problems[0].problem_id, now)
        with pytest.raises(AttemptInProgress):
            tracker.start_attempt(sample_problems[0].problem_id, now + timedelta(minutes=1))

    def test_third_attempt_is_mutated(self, tracker, sample_problems, now):
        pid = sample_problems[1].problem_id
        first, second = rated_attempts(tracker, pid, now, 2)

        third = tracker.start_attempt(pid, now + timedelta(days=30))

        assert not first.was_mutation and not second.was_mutation
        assert third.ordinal == 3
        assert third.was_mutation
        assert third.mutation_class == MutationClass.CONSTRAINT_CHANGE.value

    def test_higher_threshold(self, repository, sample_problems, now):
        tracker = AttemptTracker(repository, mutation_threshold=5)
        rated_attempts(tracker, sample_problems[1].problem_id, now, 2)
        third = tracker.start_attempt(sample_problems[1].problem_id, now + timedelta(days=30))
        assert not third.was_mutation

    def test_rotation_counter_is_persisted(self, repository, sample_problems, now):
        pid = sample_problems[1].problem_id
        rated_attempts(AttemptTracker(repository), pid, now, 3)

        # A fresh tracker continues the rotation where the last one stopped
        fourth = AttemptTracker(repository).start_attempt(pid, now + timedelta(days=60))

        assert fourth.mutation_class == MutationClass.INPUT_TYPE_CHANGE.value
        assert repository.get_config("mutation_rotation_counter") == "2"

    def test_without_collaborator_mutation_degrades(self, tracker, repository, sample_problems, now):
        pid = sample_problems[1].problem_id
        rated_attempts(tracker, pid, now, 2)

        third = tracker.start_attempt(pid, now + timedelta(days=30))

        assert repository.get_attempt(third.attempt_id).mutation_degraded is True

    def test_mutation_description_attached(self, repository, sample_problems, now):
        client = StubMutationClient()
        tracker = AttemptTracker(repository, mutation_client=client)
        pid = sample_problems[1].problem_id
        rated_attempts(tracker, pid, now, 2)

        third = tracker.start_attempt(pid, now + timedelta(days=30))
        tracker.close()

        stored = repository.get_attempt(third.attempt_id)
        assert "constraint-change variant" in stored.mutation_desc
        assert stored.mutation_degraded is False
        assert [a.ordinal for a in client.requests[0].prior_attempts] == [1, 2]

    def test_mutation_failure_never_touches_the_card(self, repository, sample_problems, now):
        tracker = AttemptTracker(repository, mutation_client=StubMutationClient(fail=True))
        pid = sample_problems[1].problem_id
        rated_attempts(tracker, pid, now, 2)
        card_before = repository.get_card_for_problem(pid)

        third = tracker.start_attempt(pid, now + timedelta(days=30))
        tracker.close()

        assert repository.get_attempt(third.attempt_id).mutation_degraded is True
        assert repository.get_card(card_before.card_id) == card_before


class TestSubmitRating:
    def test_rating_reschedules_the_card(self, tracker, repository, sample_problems, now):
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)

        outcome = tracker.submit_rating(attempt.attempt_id, 3, now + timedelta(minutes=15))

        assert outcome.attempt.rating == 3
        assert outcome.attempt.time_spent_ms == 15 * 60_000
        assert outcome.card.state == CardState.REVIEW
        assert outcome.card.reps == 1
        assert repository.get_card(attempt.card_id) == outcome.card
        assert len(repository.list_review_logs(attempt.card_id)) == 1

    def test_rating_past_the_budget_marks_timer_expired(self, tracker, sample_problems, now):
        on_time = tracker.start_attempt(sample_problems[0].problem_id, now)
        late = tracker.start_attempt(sample_problems[3].problem_id, now)  # Medium, 35 min

        assert not tracker.submit_rating(on_time.attempt_id, 3, now + timedelta(minutes=19)).attempt.timer_expired
        outcome = tracker.submit_rating(late.attempt_id, 3, now + timedelta(minutes=36))

        assert outcome.attempt.timer_expired
        assert outcome.attempt.time_spent_ms == 36 * 60_000

    def test_timer_follows_the_attempt_budget(self, tracker, sample_problems, now):
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)
        timer = tracker.timer_for(attempt)

        assert timer.remaining_ms(now + timedelta(minutes=5)) == 15 * 60_000
        assert timer.is_warning(now + timedelta(minutes=16))
        assert timer.is_expired(now + timedelta(minutes=20))

    def test_invalid_rating_changes_nothing(self, tracker, repository, sample_problems, now):
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)
        card_before = repository.get_card(attempt.card_id)

        with pytest.raises(InvalidRating):
            tracker.submit_rating(attempt.attempt_id, 7, now)

        assert repository.get_attempt(attempt.attempt_id).rating is None
        assert repository.get_card(attempt.card_id) == card_before

    def test_rated_attempt_is_final(self, tracker, sample_problems, now):
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)
        tracker.submit_rating(attempt.attempt_id, Rating.EASY, now)

        with pytest.raises(AttemptFinalized):
            tracker.submit_rating(attempt.attempt_id, Rating.AGAIN, now)
        with pytest.raises(AttemptFinalized):
            tracker.record_hint(attempt.attempt_id)

    def test_give_up_is_metadata_only(self, tracker, repository, sample_problems, now):
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)
        card_before = repository.get_card(attempt.card_id)

        tracker.record_hint(attempt.attempt_id)
        tracker.record_hint(attempt.attempt_id)
        tracker.timer_expired(attempt.attempt_id)
        given_up = tracker.give_up(attempt.attempt_id, now + timedelta(minutes=25))

        assert given_up.gave_up and given_up.timer_expired
        assert given_up.ai_hints_used == 2
        assert given_up.rating is None
        assert repository.get_card(attempt.card_id) == card_before

        outcome = tracker.submit_rating(attempt.attempt_id, Rating.AGAIN, now + timedelta(minutes=30))
        assert outcome.attempt.gave_up
        assert outcome.attempt.time_spent_ms == 25 * 60_000
        assert outcome.card.state == CardState.LEARNING

    def test_lapse_from_review(self, tracker, repository, sample_problems, now):
        pid = sample_problems[0].problem_id
        rated_attempts(tracker, pid, now, 1)
        due = repository.get_card_for_problem(pid).due

        attempt = tracker.start_attempt(pid, due + timedelta(days=2))
        outcome = tracker.submit_rating(attempt.attempt_id, Rating.AGAIN, due + timedelta(days=2))

        assert outcome.card.state == CardState.RELEARNING
        assert outcome.card.lapses == 1

    def test_corrupt_card_is_reset_then_scheduled(self, tracker, repository, sample_problems, now):
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)
        card = repository.get_card(attempt.card_id)
        repository.update_card(
            card.card_id, card.version,
            {"state": "Review", "reps": 2, "difficulty": 42.0, "stability": 3.0, "last_review": now},
        )

        outcome = tracker.submit_rating(attempt.attempt_id, Rating.GOOD, now + timedelta(minutes=5))

        assert outcome.card_was_reset
        assert outcome.card.reps == 1
        assert 1.0 <= outcome.card.difficulty <= 10.0

    def test_version_conflict_is_retried(self, database, sample_problems, now):
        repository = ConflictingRepository(database, conflicts=2)
        tracker = AttemptTracker(repository, max_retries=3)
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)

        outcome = tracker.submit_rating(attempt.attempt_id, Rating.GOOD, now)

        assert outcome.retries == 2
        assert outcome.attempt.rating == 3

    def test_version_conflict_gives_up_after_max_retries(self, database, sample_problems, now):
        repository = ConflictingRepository(database, conflicts=10)
        tracker = AttemptTracker(repository, max_retries=2)
        attempt = tracker.start_attempt(sample_problems[0].problem_id, now)

        with pytest.raises(VersionConflict):
            tracker.submit_rating(attempt.attempt_id, Rating.GOOD, now)

        assert repository.calls == 3
        assert repository.get_attempt(attempt.attempt_id).rating is None
