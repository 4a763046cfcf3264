"""
Error taxonomy for the scheduling core.

Session composition outcomes (no due cards, no new cards) are not errors;
see src.sessions.models.SessionSignal.
"""

from __future__ import annotations


class CodeDrillError(Exception):
    """Base class for all scheduling-core errors."""
    pass


class InvalidRating(CodeDrillError, ValueError):
    """Raised when a rating is not one of Again(1), Hard(2), Good(3), Easy(4)."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid rating {value!r}: expected 1 (Again), 2 (Hard), 3 (Good) or 4 (Easy)")


class CorruptState(CodeDrillError):
    """Raised when a stored card violates its invariants."""

    def __init__(self, card_id: int | None, reason: str):
        self.card_id = card_id
        self.reason = reason
        super().__init__(f"Card {card_id} is corrupt: {reason}")


class VersionConflict(CodeDrillError):
    """Raised when an optimistic card update was based on a stale read."""

    def __init__(self, card_id: int, expected_version: int):
        self.card_id = card_id
        self.expected_version = expected_version
        super().__init__(f"Card {card_id} changed since version {expected_version} was read")


class MutationRequestFailed(CodeDrillError):
    """Raised when the content-mutation collaborator cannot serve a request."""

    def __init__(self, problem_id: int, reason: str):
        self.problem_id = problem_id
        self.reason = reason
        super().__init__(f"Mutation request for problem {problem_id} failed: {reason}")


class PersistenceError(CodeDrillError):
    """Raised when the storage engine fails. Always surfaced to the caller."""
    pass


class RecordNotFound(CodeDrillError, LookupError):
    """Raised when a card, attempt, session or problem id does not exist."""

    def __init__(self, kind: str, record_id: object):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class AttemptInProgress(CodeDrillError):
    """Raised when a card already has an open, unrated attempt."""

    def __init__(self, card_id: int, attempt_id: int):
        self.card_id = card_id
        self.attempt_id = attempt_id
        super().__init__(f"Card {card_id} already has open attempt {attempt_id}")


class AttemptFinalized(CodeDrillError):
    """Raised when something tries to change an attempt that already has a rating."""

    def __init__(self, attempt_id: int):
        self.attempt_id = attempt_id
        super().__init__(f"Attempt {attempt_id} is already rated and immutable")


class SessionSlotMismatch(CodeDrillError):
    """Raised when an attempt names a session that has no pending slot for its card."""

    def __init__(self, session_id: int, card_id: int, reason: str):
        self.session_id = session_id
        self.card_id = card_id
        self.reason = reason
        super().__init__(f"Session {session_id} cannot take card {card_id}: {reason}")
