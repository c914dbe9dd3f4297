"""Randomized request pacing and identity rotation.

The scheduler only computes values; the client performs the sleep and
attaches the identity header. The random source is injected so tests can
seed it.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .spot_config import (
    MODERN_USER_AGENTS,
    ROUTINE_DELAY_MAX,
    ROUTINE_DELAY_MIN,
    SETTLE_DELAY_MAX,
    SETTLE_DELAY_MIN,
)


class OperationClass(str, enum.Enum):
    ROUTINE = "routine"
    POST_LOGIN = "post_login"


@dataclass(frozen=True)
class DelayRange:
    """Inclusive delay bounds in seconds."""

    min_s: float
    max_s: float

    def __post_init__(self) -> None:
        if self.min_s < 0 or self.max_s < 0:
            raise ValueError(f"delay bounds must be non-negative: {self.min_s}..{self.max_s}")
        if self.min_s > self.max_s:
            raise ValueError(f"delay minimum exceeds maximum: {self.min_s} > {self.max_s}")


@dataclass(frozen=True)
class DelayPolicy:
    """Delay ranges per operation class plus the identity pool to rotate through."""

    routine: DelayRange = field(default_factory=lambda: DelayRange(ROUTINE_DELAY_MIN, ROUTINE_DELAY_MAX))
    post_login: DelayRange = field(default_factory=lambda: DelayRange(SETTLE_DELAY_MIN, SETTLE_DELAY_MAX))
    identities: Tuple[str, ...] = MODERN_USER_AGENTS
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.identities:
            raise ValueError("identity pool must not be empty")

    def range_for(self, operation_class: OperationClass) -> DelayRange:
        if OperationClass(operation_class) is OperationClass.POST_LOGIN:
            return self.post_login
        return self.routine


class PacingScheduler:
    def __init__(self, policy: Optional[DelayPolicy] = None, rng: Optional[random.Random] = None) -> None:
        self.policy = policy or DelayPolicy()
        self._rng = rng or random.Random()

    def next_delay(self, operation_class: OperationClass = OperationClass.ROUTINE) -> float:
        """Seconds to wait before the next request of ``operation_class``."""

        if not self.policy.enabled:
            return 0.0
        bounds = self.policy.range_for(operation_class)
        if bounds.min_s == bounds.max_s:
            return bounds.min_s
        # uniform() may round onto either endpoint; clamp keeps the contract exact.
        return min(bounds.max_s, max(bounds.min_s, self._rng.uniform(bounds.min_s, bounds.max_s)))

    def next_identity(self) -> str:
        return self._rng.choice(self.policy.identities)


__all__ = ["OperationClass", "DelayRange", "DelayPolicy", "PacingScheduler"]
