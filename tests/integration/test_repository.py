"""
Integration tests for the SQLAlchemy repository (in-memory SQLite).
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from src.core.errors import AttemptFinalized, PersistenceError, RecordNotFound, VersionConflict
from src.scheduling import CardState, CardType, FSRSScheduler, Rating


class TestProblems:
    def test_add_is_idempotent_by_slug(self, repository):
        first = repository.add_problem("two-sum", "Two Sum", "Arrays", "Easy", "Hash Map")
        again = repository.add_problem("two-sum", "Renamed", "Strings")

        assert again == first
        assert len(repository.list_problems()) == 1

    def test_category_prefers_pattern(self, repository):
        with_pattern = repository.add_problem("3sum", "3Sum", "Arrays", "Medium", "Two Pointers")
        without = repository.add_problem("lru-cache", "LRU Cache", "Design", "Medium")

        assert repository.category_for(with_pattern.problem_id) == "Two Pointers"
        assert repository.category_for(without.problem_id) == "Design"

    def test_unknown_problem(self, repository):
        with pytest.raises(RecordNotFound):
            repository.get_problem(404)

    def test_invalid_difficulty_is_a_persistence_error(self, repository):
        with pytest.raises(PersistenceError):
            repository.add_problem("bad", "Bad", "Arrays", "Impossible")


class TestCards:
    def test_card_created_on_first_exposure(self, repository, sample_problems, now):
        problem = sample_problems[0]
        card = repository.get_or_create_card(problem.problem_id, now)

        assert card.state == CardState.NEW
        assert card.reps == 0
        assert card.version == 0
        assert card.due == now
        assert repository.get_or_create_card(problem.problem_id, now) == card

    def test_card_types_are_separate(self, repository, sample_problems, now):
        pid = sample_problems[0].problem_id
        dsa = repository.get_or_create_card(pid, now, CardType.DSA)
        design = repository.get_or_create_card(pid, now, CardType.SYSTEM_DESIGN)
        assert dsa.card_id != design.card_id

    def test_optimistic_update(self, repository, sample_problems, now):
        card = repository.get_or_create_card(sample_problems[0].problem_id, now)
        updated = FSRSScheduler().review(card, Rating.GOOD, now)

        saved = repository.save_card(updated, expected_version=card.version)

        assert saved.version == 1
        stored = repository.get_card(card.card_id)
        assert stored.state == CardState.REVIEW
        assert stored.stability == pytest.approx(updated.stability)
        assert stored.due == updated.due

    def test_stale_version_conflicts(self, repository, sample_problems, now):
        card = repository.get_or_create_card(sample_problems[0].problem_id, now)
        repository.update_card(card.card_id, 0, {"reps": 0})

        with pytest.raises(VersionConflict):
            repository.update_card(card.card_id, 0, {"reps": 0})

    def test_due_cards_ordering(self, repository, sample_problems, now):
        scheduler = FSRSScheduler()
        cards = [repository.get_or_create_card(p.problem_id, now) for p in sample_problems[:3]]
        # Same due instant for the first two; the second has more lapses
        base = scheduler.review(cards[0], Rating.GOOD, now - timedelta(days=10))
        repository.save_card(replace(base, card_id=cards[0].card_id, due=now - timedelta(days=1)), 0)
        repository.save_card(
            replace(base, card_id=cards[1].card_id, problem_id=cards[1].problem_id,
                    due=now - timedelta(days=1), lapses=1, reps=2),
            0,
        )
        repository.save_card(
            replace(base, card_id=cards[2].card_id, problem_id=cards[2].problem_id,
                    due=now - timedelta(days=3)),
            0,
        )

        due = repository.list_due_cards(now)

        assert [c.card_id for c in due] == [cards[2].card_id, cards[1].card_id, cards[0].card_id]
        assert repository.list_due_cards(now - timedelta(days=5)) == []

    def test_new_and_unexposed(self, repository, sample_problems, now):
        repository.get_or_create_card(sample_problems[1].problem_id, now)

        assert [c.problem_id for c in repository.list_new_cards()] == [sample_problems[1].problem_id]
        unexposed = [p.problem_id for p in repository.list_unexposed_problems()]
        assert sample_problems[1].problem_id not in unexposed
        assert len(unexposed) == len(sample_problems) - 1

    def test_reset_card_to_new(self, repository, sample_problems, now):
        card = repository.get_or_create_card(sample_problems[0].problem_id, now)
        repository.update_card(card.card_id, 0, {"difficulty": 42.0, "state": "Review", "reps": 3})

        reset = repository.reset_card_to_new(card.card_id, 1, now)

        assert reset.state == CardState.NEW
        assert reset.reps == 0
        assert reset.version == 2


class TestAttempts:
    def test_ordinals_count_every_attempt_of_a_problem(self, repository, sample_problems, now):
        pid = sample_problems[0].problem_id
        card = repository.get_or_create_card(pid, now)

        first = repository.insert_attempt(pid, card.card_id, now)
        second = repository.insert_attempt(pid, card.card_id, now + timedelta(hours=1))

        assert (first.ordinal, second.ordinal) == (1, 2)
        assert repository.count_attempts(pid) == 2
        assert repository.get_open_attempt(card.card_id).attempt_id == second.attempt_id

    def test_record_review_is_atomic(self, repository, sample_problems, now):
        pid = sample_problems[0].problem_id
        card = repository.get_or_create_card(pid, now)
        attempt = repository.insert_attempt(pid, card.card_id, now)
        updated, log = FSRSScheduler().review_with_log(card, Rating.GOOD, now)

        # Someone else bumped the card: nothing of the review may be written
        repository.update_card(card.card_id, 0, {"elapsed_days": 0})
        with pytest.raises(VersionConflict):
            repository.record_review(attempt.attempt_id, updated, 0, log, now)

        assert repository.get_attempt(attempt.attempt_id).rating is None
        assert repository.list_review_logs(card.card_id) == []

        finalized, saved = repository.record_review(attempt.attempt_id, updated, 1, log, now, time_spent_ms=1000)
        assert finalized.rating == 3
        assert finalized.time_spent_ms == 1000
        assert saved.version == 2
        assert len(repository.list_review_logs(card.card_id)) == 1

    def test_rated_attempts_are_immutable(self, repository, sample_problems, now):
        pid = sample_problems[0].problem_id
        card = repository.get_or_create_card(pid, now)
        attempt = repository.insert_attempt(pid, card.card_id, now)
        updated, log = FSRSScheduler().review_with_log(card, Rating.EASY, now)
        repository.record_review(attempt.attempt_id, updated, 0, log, now)

        with pytest.raises(AttemptFinalized):
            repository.record_hint(attempt.attempt_id)
        with pytest.raises(AttemptFinalized):
            repository.update_attempt_metadata(attempt.attempt_id, notes="late")
        with pytest.raises(AttemptFinalized):
            repository.record_review(attempt.attempt_id, updated, 1, log, now)

    def test_unknown_metadata_field(self, repository, sample_problems, now):
        pid = sample_problems[0].problem_id
        card = repository.get_or_create_card(pid, now)
        attempt = repository.insert_attempt(pid, card.card_id, now)
        with pytest.raises(ValueError):
            repository.update_attempt_metadata(attempt.attempt_id, rating=4)


class TestSessionsAndConfig:
    def test_session_slots(self, repository, sample_problems, now):
        new = repository.get_or_create_card(sample_problems[0].problem_id, now)
        stored = repository.create_session(now, new_card=new)

        assert stored.new_slot_status == "pending"
        assert stored.review_slot_status is None
        assert [s.session_id for s in repository.list_open_sessions()] == [stored.session_id]

        repository.set_slot_status(stored.session_id, "new", "skipped")
        closed = repository.close_session(stored.session_id, "completed", now)
        assert closed.status == "completed"
        assert repository.list_open_sessions() == []

    def test_user_config_roundtrip(self, repository):
        assert repository.get_config("mutation_rotation_counter", "0") == "0"
        repository.set_config("mutation_rotation_counter", "3")
        repository.set_config("mutation_rotation_counter", "4")
        assert repository.get_config("mutation_rotation_counter") == "4"

    def test_category_stats(self, repository, sample_problems, now):
        pid = sample_problems[0].problem_id
        card = repository.get_or_create_card(pid, now)
        attempt = repository.insert_attempt(pid, card.card_id, now)
        updated, log = FSRSScheduler().review_with_log(card, Rating.GOOD, now)
        repository.record_review(attempt.attempt_id, updated, 0, log, now)

        stats = {s.category: s for s in repository.category_stats()}

        assert stats["Arrays"].total == 3
        assert stats["Arrays"].attempted == 1
        assert stats["Arrays"].solved == 1
        assert stats["Strings"].attempted == 0


class TestDatabase:
    def test_get_database_follows_settings(self, monkeypatch, tmp_path):
        from config import get_settings
        from src.db.database import get_database

        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'nested' / 'drill.db'}")
        get_settings.cache_clear()
        get_database.cache_clear()
        try:
            db = get_database()
            db.init_db()
            with db.session_scope() as session:
                assert session.bind is db.engine

            assert db.url.endswith("drill.db")
            assert (tmp_path / "nested" / "drill.db").exists()
            db.dispose()
        finally:
            get_settings.cache_clear()
            get_database.cache_clear()
