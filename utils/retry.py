"""
Retry policy shared by every pipeline stage.
"""

from __future__ import annotations

from dataclasses import dataclass

import config


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: initial_delay, initial_delay * multiplier, ...

    ``max_attempts`` counts the first call, so 3 means two retries.
    """
    max_attempts: int = 3
    initial_delay: float = 2.0  # seconds
    multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            initial_delay=config.RETRY_INITIAL_DELAY,
            multiplier=config.RETRY_BACKOFF_MULTIPLIER,
            max_delay=config.RETRY_MAX_DELAY,
        )

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.multiplier < 1:
            raise ValueError("backoff must be non-negative and non-decreasing")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        return bool(getattr(error, "retryable", False)) and attempt < self.max_attempts

    def delays(self) -> list[float]:
        return [self.delay_for(a) for a in range(1, self.max_attempts)]
