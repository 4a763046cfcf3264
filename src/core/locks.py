"""
Per-card locking primitives.

Two separate concerns:
- KeyedMutex: single-writer ordering keyed by card id. Holds only for the
  duration of one operation (start attempt, submit rating, build session).
- CardLockRegistry: session-scoped "in session" marks so a second session
  request cannot pick a card that is already being practiced. These marks
  outlive a single call and go stale after a timeout.

Both assume a single local scheduling instance.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Hashable

from loguru import logger


class KeyedMutex:
    """One re-entrant lock per key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Serialize work on a single key."""
        lock = self._lock_for(key)
        with lock:
            yield

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """Serialize work on several keys, acquired in sorted order."""
        ordered = sorted(set(keys), key=repr)
        locks = [self._lock_for(k) for k in ordered]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()


@dataclass(frozen=True)
class CardLock:
    """A card marked as in-session."""

    card_id: int
    session_id: int
    acquired_at: datetime

    def is_stale(self, now: datetime, timeout: timedelta) -> bool:
        return now - self.acquired_at > timeout


class CardLockRegistry:
    """
    Tracks which cards are currently in an open session.

    A lock older than `timeout` is treated as abandoned: it no longer blocks
    other sessions and is dropped by `expire_stale`.
    """

    def __init__(self, timeout: timedelta):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[int, CardLock] = {}

    def try_acquire(self, card_id: int, session_id: int, now: datetime) -> bool:
        """Mark a card as in-session. Returns False if another live session holds it."""
        with self._guard:
            current = self._locks.get(card_id)
            if current is not None and current.session_id != session_id:
                if not current.is_stale(now, self.timeout):
                    return False
                logger.info(
                    f"Card {card_id} lock from session {current.session_id} is stale, reassigning"
                )
            self._locks[card_id] = CardLock(card_id=card_id, session_id=session_id, acquired_at=now)
            return True

    def release(self, card_id: int, session_id: int) -> bool:
        """Release one card if it is held by the given session."""
        with self._guard:
            current = self._locks.get(card_id)
            if current is None or current.session_id != session_id:
                return False
            del self._locks[card_id]
            return True

    def release_session(self, session_id: int) -> list[int]:
        """Release every card held by a session."""
        with self._guard:
            released = [cid for cid, lock in self._locks.items() if lock.session_id == session_id]
            for cid in released:
                del self._locks[cid]
        return released

    def is_locked(self, card_id: int, now: datetime) -> bool:
        with self._guard:
            current = self._locks.get(card_id)
            return current is not None and not current.is_stale(now, self.timeout)

    def locked_card_ids(self, now: datetime) -> set[int]:
        """Card ids held by live (non-stale) sessions."""
        with self._guard:
            return {
                cid for cid, lock in self._locks.items()
                if not lock.is_stale(now, self.timeout)
            }

    def expire_stale(self, now: datetime) -> list[CardLock]:
        """Drop and return all stale locks."""
        with self._guard:
            stale = [lock for lock in self._locks.values() if lock.is_stale(now, self.timeout)]
            for lock in stale:
                del self._locks[lock.card_id]
        return stale
