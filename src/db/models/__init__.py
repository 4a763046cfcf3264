# SQLAlchemy models
from .base import Base
from .cards import ProblemRecord, ReviewCardRecord, ReviewLogRecord
from .practice import AttemptRecord, SessionRecord, UserConfigEntry

__all__ = [
    # Base
    "Base",
    # Cards
    "ProblemRecord",
    "ReviewCardRecord",
    "ReviewLogRecord",
    # Practice
    "AttemptRecord",
    "SessionRecord",
    "UserConfigEntry",
]
