"""
Core Module - Shared errors, locking and logging setup.

Every other package (scheduling, sessions, practice, db) imports its
exception types and per-card locking primitives from here rather than
defining its own.
"""

from src.core.errors import (
    AttemptFinalized,
    AttemptInProgress,
    CodeDrillError,
    CorruptState,
    InvalidRating,
    MutationRequestFailed,
    PersistenceError,
    RecordNotFound,
    SessionSlotMismatch,
    VersionConflict,
)
from src.core.locks import CardLock, CardLockRegistry, KeyedMutex

__all__ = [
    # Errors
    "CodeDrillError",
    "InvalidRating",
    "CorruptState",
    "VersionConflict",
    "MutationRequestFailed",
    "PersistenceError",
    "RecordNotFound",
    "AttemptInProgress",
    "AttemptFinalized",
    "SessionSlotMismatch",
    # Locking
    "KeyedMutex",
    "CardLock",
    "CardLockRegistry",
]
