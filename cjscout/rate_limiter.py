"""Process-wide gate for the throttled upstream endpoints.

The upstream enforces roughly one freight/inventory request per second per
account, so every such call in a run shares one limiter instance regardless
of how many candidates are processed concurrently.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .errors import RateLimitTimeout

LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """One slot per ``interval`` seconds, handed out in request order."""

    def __init__(
        self,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def acquire(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Block until a slot is free.

        Raises RateLimitTimeout when the slot would start after ``timeout``
        seconds, or when ``cancel`` is set before the slot comes up.
        """
        if cancel is not None and cancel.is_set():
            raise RateLimitTimeout("rate limiter acquire cancelled")

        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            wait = slot - now
            if timeout is not None and wait > timeout:
                raise RateLimitTimeout(
                    f"no rate limiter slot within {timeout:.1f}s (next in {wait:.1f}s)"
                )
            self._next_slot = slot + self.interval

        if wait <= 0:
            return
        LOGGER.debug("Rate limiter waiting %.2fs", wait)
        if cancel is not None:
            if cancel.wait(wait):
                raise RateLimitTimeout("rate limiter acquire cancelled")
        else:
            self._sleep(wait)
