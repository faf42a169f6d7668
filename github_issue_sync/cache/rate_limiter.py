"""Advisory circuit breaker for GitHub API rate limits."""

import logging
import time
from collections.abc import Callable
from datetime import datetime

logger = logging.getLogger(__name__)


class RateLimiter:
    """Tracks whether the API quota is exhausted and when it comes back.

    Nothing here blocks. Callers check ``is_limited()`` before a request and
    call ``trip()`` when a response reports zero remaining calls; the flag
    clears itself once the reset time has passed.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._reset_at: float | None = None

    def is_limited(self) -> bool:
        if self._reset_at is None:
            return False
        if self._clock() >= self._reset_at:
            logger.info("GitHub rate limit window has reset")
            self._reset_at = None
            return False
        return True

    def trip(self, reset_at: float, label: str) -> None:
        """Mark the API as rate limited until ``reset_at`` (epoch seconds).

        Args:
            reset_at: Value of the x-ratelimit-reset header
            label: Which request kind hit the limit, for the log line
        """
        now = self._clock()
        wait = max(reset_at - now, 0)
        reset_time = datetime.fromtimestamp(now + wait).strftime("%H:%M:%S")
        logger.warning("%s rate-limit; resets at %s", label, reset_time)
        self._reset_at = now + wait

    def reset(self) -> None:
        self._reset_at = None

    @property
    def reset_at(self) -> float | None:
        return self._reset_at
