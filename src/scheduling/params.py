"""
FSRS parameter set.

Every scheduler call receives one immutable SchedulerParams value; nothing
in the algorithm reads module-level or global state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from config import Settings


# Default FSRS weights (FSRS-5 published defaults)
DEFAULT_WEIGHTS: tuple[float, ...] = (
    0.40255,  # w0: initial stability for Again
    1.18385,  # w1: initial stability for Hard
    3.173,    # w2: initial stability for Good
    15.69105, # w3: initial stability for Easy
    7.1949,   # w4: initial difficulty baseline
    0.5345,   # w5: initial difficulty rating slope
    1.4604,   # w6: difficulty step per rating
    0.0046,   # w7: difficulty mean reversion
    1.54575,  # w8: recall stability growth (log scale)
    0.1192,   # w9: stability saturation exponent
    1.01925,  # w10: retrievability sensitivity of growth
    1.9395,   # w11: lapse stability base
    0.11,     # w12: lapse difficulty exponent
    0.29605,  # w13: lapse stability exponent
    2.2698,   # w14: lapse retrievability sensitivity
    0.2315,   # w15: hard penalty
    2.9898,   # w16: easy bonus
    0.51655,  # w17: short-term (graduation) multiplier slope
    0.6621,   # w18: short-term (graduation) multiplier offset
)


@dataclass(frozen=True)
class SchedulerParams:
    """Immutable algorithm configuration."""

    w: tuple[float, ...] = DEFAULT_WEIGHTS
    reference_retention: float = 0.9   # R at elapsed == S
    request_retention: float = 0.9     # retention the interval is planned for
    minimum_interval: int = 1
    maximum_interval: int = 365
    difficulty_min: float = 1.0
    difficulty_max: float = 10.0
    stability_min: float = 0.01
    learning_step: timedelta = field(default=timedelta(minutes=10))
    relearning_step: timedelta = field(default=timedelta(minutes=10))
    enable_fuzz: bool = False

    def __post_init__(self):
        if len(self.w) != len(DEFAULT_WEIGHTS):
            raise ValueError(f"Expected {len(DEFAULT_WEIGHTS)} weights, got {len(self.w)}")
        if not 0.0 < self.reference_retention < 1.0:
            raise ValueError("reference_retention must be in (0, 1)")
        if not 0.0 < self.request_retention < 1.0:
            raise ValueError("request_retention must be in (0, 1)")
        if not 1 <= self.minimum_interval <= self.maximum_interval:
            raise ValueError("Require 1 <= minimum_interval <= maximum_interval")
        if not 0.0 < self.difficulty_min < self.difficulty_max:
            raise ValueError("Require 0 < difficulty_min < difficulty_max")
        if self.stability_min <= 0.0:
            raise ValueError("stability_min must be positive")
        if self.learning_step >= timedelta(days=1) or self.relearning_step >= timedelta(days=1):
            raise ValueError("Learning and relearning steps must be sub-day")
        object.__setattr__(self, "w", tuple(self.w))

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SchedulerParams":
        return cls(
            request_retention=settings.fsrs_request_retention,
            minimum_interval=settings.fsrs_minimum_interval,
            maximum_interval=settings.fsrs_maximum_interval,
            learning_step=timedelta(minutes=settings.fsrs_learning_step_minutes),
            relearning_step=timedelta(minutes=settings.fsrs_relearning_step_minutes),
            enable_fuzz=settings.fsrs_enable_fuzz,
        )


DEFAULT_PARAMS = SchedulerParams()
