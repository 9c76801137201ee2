"""
Retry policy attached to a step.

``limit`` counts retries after the first attempt, so a step wrapped in
``RetryPolicy(limit=3, delay=10)`` runs at most 4 times and waits
10s, 20s and 40s between attempts with exponential backoff.
"""

from __future__ import annotations

from dataclasses import dataclass

import config

_BACKOFFS = ("constant", "linear", "exponential")


@dataclass(frozen=True)
class RetryPolicy:
    limit: int = config.RETRY_LIMIT
    delay: float = config.RETRY_BASE_DELAY_SECONDS  # seconds
    backoff: str = config.RETRY_BACKOFF

    def __post_init__(self):
        if self.limit < 0:
            raise ValueError("retry limit must be >= 0")
        if self.delay < 0:
            raise ValueError("retry delay must be >= 0")
        if self.backoff not in _BACKOFFS:
            raise ValueError(f"unknown backoff {self.backoff!r}, expected one of {_BACKOFFS}")

    @property
    def max_attempts(self) -> int:
        return self.limit + 1

    def should_retry(self, attempt: int) -> bool:
        """True if a failure on ``attempt`` (1-based) gets another try."""
        return attempt <= self.limit

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the failure of ``attempt`` (1-based)."""
        if self.backoff == "exponential":
            return self.delay * (2 ** (attempt - 1))
        if self.backoff == "linear":
            return self.delay * attempt
        return self.delay

    def schedule(self) -> list[float]:
        return [self.delay_for(n) for n in range(1, self.limit + 1)]
