"""Rate-limit circuit breaker and retry budget."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"


class RateLimitBreaker:
    """Counts consecutive rate-limit errors across the whole run.

    Once ``threshold`` consecutive errors are seen the breaker opens and stays
    open; there is no half-open state within a run.
    """

    def __init__(self, threshold: int = 3) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.threshold = threshold
        self.state = CLOSED
        self.consecutive_errors = 0
        self.total_errors = 0
        self._lock = threading.Lock()

    def record_rate_limit(self) -> bool:
        """Record one rate-limit error. Returns True if the breaker is now open."""
        with self._lock:
            self.consecutive_errors += 1
            self.total_errors += 1
            if self.state == CLOSED and self.consecutive_errors >= self.threshold:
                LOGGER.warning(
                    "Circuit breaker OPEN after %d consecutive rate-limit errors",
                    self.consecutive_errors,
                )
                self.state = OPEN
            return self.state == OPEN

    def record_success(self) -> None:
        with self._lock:
            if self.state == CLOSED:
                self.consecutive_errors = 0

    def reset(self) -> None:
        """Close the breaker and clear its counters for a new run."""
        with self._lock:
            self.state = CLOSED
            self.consecutive_errors = 0
            self.total_errors = 0

    def is_open(self) -> bool:
        return self.state == OPEN


@dataclass
class RetryBudget:
    """Bounded retry budget with exponential backoff."""

    max_attempts: int = 2
    backoff_base: float = 2.0
    backoff_multiplier: float = 2.0
    max_backoff: float = 30.0

    def __post_init__(self):
        self.attempts = 0

    def should_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def get_backoff_delay(self) -> float:
        # attempts has already been incremented for the failed call
        delay = self.backoff_base * (self.backoff_multiplier ** max(self.attempts - 1, 0))
        return min(delay, self.max_backoff)

    def record_attempt(self) -> None:
        self.attempts += 1
