"""
Attempt Tracker - attempt counting, mutation trigger and rating finalization.

Every practice run on a problem is an attempt with a 1-based ordinal over
all of that problem's stored attempts. Once the ordinal reaches the
mutation threshold the attempt is flagged `was_mutation` and a
MutationRequest goes to the content-mutation collaborator in the
background.

A rating finalizes the attempt: only then is the scheduler invoked, and
the attempt, card and review log are persisted together. Give-up, hints
and timer expiry are attempt metadata and never move a card. A rating that
arrives past the time budget also marks the attempt `timer_expired`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from src.core.errors import (
    AttemptFinalized,
    AttemptInProgress,
    CorruptState,
    MutationRequestFailed,
    SessionSlotMismatch,
    VersionConflict,
)
from src.core.locks import KeyedMutex
from src.db.repository import Attempt, Repository
from src.practice.mutation import (
    AttemptSummary,
    MutationClass,
    MutationPolicy,
    MutationRequest,
    MutationResult,
    RoundRobinMutationPolicy,
    mutation_policy_for,
    should_mutate,
)
from src.practice.mutation_client import (
    HttpMutationClient,
    MutationClient,
    MutationDispatcher,
    OfflineMutationClient,
)
from src.practice.timer import PracticeTimer, budget_ms
from src.scheduling.fsrs import FSRSScheduler, check_card
from src.scheduling.models import Card, CardType, Rating, ReviewLog, as_utc, utc_now
from src.scheduling.params import SchedulerParams
from src.sessions.models import SessionStatus, SlotStatus

if TYPE_CHECKING:
    from config import Settings
    from src.sessions.orchestrator import SessionOrchestrator

MUTATION_COUNTER_KEY = "mutation_rotation_counter"


@dataclass(frozen=True)
class RatingOutcome:
    """Result of a finalized attempt."""

    attempt: Attempt
    card: Card
    log: ReviewLog
    card_was_reset: bool = False
    retries: int = 0


class AttemptTracker:
    """
    Records attempts and forwards ratings to the scheduler.

    Work on a card is serialized through the shared KeyedMutex; a
    VersionConflict from a concurrent writer is retried with a fresh read.
    """

    def __init__(
        self,
        repository: Repository,
        scheduler: FSRSScheduler | None = None,
        mutation_policy: MutationPolicy | None = None,
        mutation_threshold: int = 3,
        mutation_client: MutationClient | None = None,
        mutation_workers: int = 2,
        mutex: KeyedMutex | None = None,
        orchestrator: "SessionOrchestrator | None" = None,
        max_retries: int = 3,
        timer_budgets: dict[str, int] | None = None,
    ):
        self.repository = repository
        self.scheduler = scheduler or FSRSScheduler()
        self.mutation_policy = mutation_policy or RoundRobinMutationPolicy()
        self.mutation_threshold = mutation_threshold
        self.mutex = mutex or KeyedMutex()
        self.orchestrator = orchestrator
        self.max_retries = max_retries
        self.timer_budgets = timer_budgets
        self.dispatcher: MutationDispatcher | None = None
        if mutation_client is not None:
            self.dispatcher = MutationDispatcher(
                mutation_client,
                on_success=self._on_mutation_ready,
                on_failure=self._on_mutation_failed,
                max_workers=mutation_workers,
            )

    @classmethod
    def from_settings(
        cls,
        repository: Repository,
        settings: "Settings",
        mutex: KeyedMutex | None = None,
        orchestrator: "SessionOrchestrator | None" = None,
        mutation_client: MutationClient | None = None,
    ) -> "AttemptTracker":
        if mutation_client is None:
            if settings.mutation_service_url:
                mutation_client = HttpMutationClient(
                    settings.mutation_service_url, timeout_ms=settings.mutation_timeout_ms
                )
            else:
                mutation_client = OfflineMutationClient()
        return cls(
            repository,
            scheduler=FSRSScheduler(SchedulerParams.from_settings(settings)),
            mutation_policy=mutation_policy_for(settings.mutation_policy),
            mutation_threshold=settings.mutation_threshold,
            mutation_client=mutation_client,
            mutation_workers=settings.mutation_workers,
            mutex=mutex,
            orchestrator=orchestrator,
            max_retries=settings.scheduling_max_retries,
            timer_budgets=settings.get_timer_budgets_minutes(),
        )

    def close(self) -> None:
        """Wait for in-flight mutation requests and stop the workers."""
        if self.dispatcher is not None:
            self.dispatcher.shutdown(wait=True)

    # =========================================================================
    # Starting attempts
    # =========================================================================

    def start_attempt(
        self,
        problem_id: int,
        now: datetime | None = None,
        card_type: CardType = CardType.DSA,
        session_id: int | None = None,
    ) -> Attempt:
        """
        Open an attempt on a problem.

        Args:
            problem_id: Problem being practiced
            now: Start instant (defaults to the current UTC time)
            card_type: Review track of the card
            session_id: Session the attempt belongs to, if any

        Returns:
            The stored Attempt, flagged `was_mutation` from the threshold on

        Raises:
            AttemptInProgress: the card already has an unrated attempt
            SessionSlotMismatch: `session_id` is not open or has no pending slot
                for this card
        """
        now = as_utc(now) if now is not None else utc_now()
        card = self.repository.get_or_create_card(problem_id, now, card_type)
        problem = self.repository.get_problem(problem_id)

        with self.mutex.hold_many([card.card_id, ("problem", problem_id)]):
            open_attempt = self.repository.get_open_attempt(card.card_id)
            if open_attempt is not None:
                raise AttemptInProgress(card.card_id, open_attempt.attempt_id)
            if session_id is not None:
                self._check_session_slot(session_id, card.card_id)

            ordinal = self.repository.count_attempts(problem_id) + 1
            mutate = should_mutate(ordinal, self.mutation_threshold)
            mutation_class = None
            if mutate:
                counter = int(self.repository.get_config(MUTATION_COUNTER_KEY, "0") or 0)
                mutation_class = self.mutation_policy.select(counter)
                self.repository.set_config(MUTATION_COUNTER_KEY, str(counter + 1))

            attempt = self.repository.insert_attempt(
                problem_id=problem_id,
                card_id=card.card_id,
                started_at=now,
                session_id=session_id,
                time_budget_ms=budget_ms(problem.difficulty, self.timer_budgets),
                was_mutation=mutate,
                mutation_class=mutation_class.value if mutation_class else None,
            )

        logger.info(
            f"Attempt {attempt.attempt_id} started: problem {problem_id} #{attempt.ordinal}"
            + (f", mutation {mutation_class.value}" if mutation_class else "")
        )
        if mutation_class is not None:
            self._request_mutation(attempt, mutation_class)
        return attempt

    def _check_session_slot(self, session_id: int, card_id: int) -> None:
        stored = self.repository.get_session(session_id)
        if stored.status != SessionStatus.OPEN.value:
            raise SessionSlotMismatch(session_id, card_id, f"session is {stored.status}")
        slot = stored.slot_for_card(card_id)
        if slot is None:
            raise SessionSlotMismatch(session_id, card_id, "card is not part of the session")
        if getattr(stored, f"{slot}_slot_status") != SlotStatus.PENDING.value:
            raise SessionSlotMismatch(session_id, card_id, f"{slot} slot already resolved")

    def _request_mutation(self, attempt: Attempt, mutation_class: MutationClass) -> None:
        prior = tuple(
            AttemptSummary.from_attempt(a)
            for a in self.repository.list_attempts(attempt.problem_id)
            if a.attempt_id != attempt.attempt_id
        )
        request = MutationRequest(
            problem_id=attempt.problem_id,
            attempt_id=attempt.attempt_id,
            mutation_class=mutation_class,
            prior_attempts=prior,
        )
        if self.dispatcher is None:
            self._on_mutation_failed(
                request, MutationRequestFailed(attempt.problem_id, "no mutation service configured")
            )
            return
        self.dispatcher.submit(request)

    def _on_mutation_ready(self, result: MutationResult) -> None:
        try:
            self.repository.set_mutation_description(result.attempt_id, result.description)
            logger.debug(f"Mutation attached to attempt {result.attempt_id}")
        except AttemptFinalized:
            logger.info(f"Mutation for attempt {result.attempt_id} arrived after rating; dropped")

    def _on_mutation_failed(self, request: MutationRequest, error: MutationRequestFailed) -> None:
        logger.warning(f"Attempt {request.attempt_id} continues on original content: {error.reason}")
        try:
            self.repository.mark_attempt_degraded(request.attempt_id)
        except AttemptFinalized:
            logger.info(f"Attempt {request.attempt_id} already rated; degraded flag not recorded")

    # =========================================================================
    # Attempt metadata
    # =========================================================================

    def record_hint(self, attempt_id: int) -> int:
        """Count one AI hint against the attempt."""
        return self.repository.record_hint(attempt_id)

    def annotate(
        self, attempt_id: int, user_code: str | None = None, notes: str | None = None
    ) -> Attempt:
        fields = {}
        if user_code is not None:
            fields["user_code"] = user_code
        if notes is not None:
            fields["notes"] = notes
        return self.repository.update_attempt_metadata(attempt_id, **fields)

    def give_up(self, attempt_id: int, now: datetime | None = None) -> Attempt:
        """Mark the attempt abandoned. The card is untouched until a rating arrives."""
        now = as_utc(now) if now is not None else utc_now()
        attempt = self.repository.get_attempt(attempt_id)
        logger.info(f"Attempt {attempt_id} given up")
        return self.repository.update_attempt_metadata(
            attempt_id,
            gave_up=True,
            finished_at=now,
            time_spent_ms=_elapsed_ms(attempt.started_at, now),
        )

    def timer_for(self, attempt: Attempt) -> PracticeTimer | None:
        """Countdown over the attempt's time budget, started at `started_at`."""
        if not attempt.time_budget_ms:
            return None
        return PracticeTimer(attempt.time_budget_ms, attempt.started_at)

    def timer_expired(self, attempt_id: int) -> Attempt:
        """Record that the time budget ran out."""
        logger.info(f"Attempt {attempt_id}: time budget expired")
        return self.repository.update_attempt_metadata(attempt_id, timer_expired=True)

    # =========================================================================
    # Finalization
    # =========================================================================

    def submit_rating(
        self,
        attempt_id: int,
        rating: Rating | int | str,
        now: datetime | None = None,
        user_code: str | None = None,
        notes: str | None = None,
        fuzz_seed: int | None = None,
    ) -> RatingOutcome:
        """
        Finalize an attempt with a rating and reschedule its card.

        Raises:
            InvalidRating: before anything is read or written
            AttemptFinalized: the attempt already carries a rating
            VersionConflict: still conflicting after `max_retries` re-reads
        """
        rating = Rating.parse(rating)
        now = as_utc(now) if now is not None else utc_now()
        attempt = self.repository.get_attempt(attempt_id)
        if attempt.is_finalized:
            raise AttemptFinalized(attempt_id)

        stopped_at = attempt.finished_at if attempt.gave_up and attempt.finished_at else now
        timer = self.timer_for(attempt)
        if timer is not None:
            result = timer.stop(stopped_at)
            time_spent, expired = result.elapsed_ms, result.expired
        else:
            time_spent, expired = _elapsed_ms(attempt.started_at, stopped_at), False
        reset = False
        retries = 0

        with self.mutex.hold(attempt.card_id):
            while True:
                try:
                    card = self.repository.get_card(attempt.card_id)
                    try:
                        check_card(card, self.scheduler.params)
                    except CorruptState as e:
                        logger.warning(f"{e}; resetting to New")
                        card = self.repository.reset_card_to_new(card.card_id, card.version, now)
                        reset = True
                    updated, log = self.scheduler.review_with_log(card, rating, now, fuzz_seed)
                    finalized, saved = self.repository.record_review(
                        attempt_id,
                        updated,
                        expected_version=card.version,
                        log=log,
                        finished_at=now,
                        time_spent_ms=time_spent,
                        timer_expired=expired,
                        user_code=user_code,
                        notes=notes,
                    )
                    break
                except VersionConflict:
                    if retries >= self.max_retries:
                        logger.error(f"Card {attempt.card_id}: giving up after {retries} retries")
                        raise
                    retries += 1
                    logger.info(f"Card {attempt.card_id} changed concurrently; retry {retries}")

        if self.dispatcher is not None and attempt.was_mutation:
            self.dispatcher.cancel(attempt_id)

        logger.info(
            f"Attempt {attempt_id} rated {rating.name}: card {saved.card_id} "
            f"{log.state_before.value} -> {saved.state.value}, due {saved.due.isoformat()}"
        )

        if self.orchestrator is not None and finalized.session_id is not None:
            self.orchestrator.mark_slot_finalized(finalized.session_id, finalized.card_id, now)

        return RatingOutcome(
            attempt=finalized, card=saved, log=log, card_was_reset=reset, retries=retries
        )


def _elapsed_ms(started_at: datetime, now: datetime) -> int:
    return max(0, int((now - started_at).total_seconds() * 1000))
