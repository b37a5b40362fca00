"""
Exponential backoff policy for reconnecting to the streaming source.
Pure arithmetic; the supervisor owns attempts, clocks and sleeping.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from blockrecon.config import ReconcilerSettings


@dataclass(frozen=True)
class BackoffPolicy:
    initial_interval_s: float = 0.5
    multiplier: float = 1.5
    max_interval_s: float = 60.0
    max_elapsed_s: Optional[float] = 900.0

    @classmethod
    def from_settings(cls, settings: ReconcilerSettings) -> "BackoffPolicy":
        return cls(
            initial_interval_s=settings.backoff_initial_interval_s,
            multiplier=settings.backoff_multiplier,
            max_interval_s=settings.backoff_max_interval_s,
            max_elapsed_s=settings.backoff_max_elapsed_s,
        )

    def next_backoff(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based) of a failure cycle."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        try:
            raw = self.initial_interval_s * self.multiplier ** attempt
        except OverflowError:
            raw = math.inf
        return min(raw, self.max_interval_s)

    def exhausted(self, elapsed_s: float) -> bool:
        """True once a failure cycle has lasted longer than ``max_elapsed_s``."""
        return self.max_elapsed_s is not None and elapsed_s >= self.max_elapsed_s
