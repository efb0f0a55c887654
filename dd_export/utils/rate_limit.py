"""Shared request pacing for the Datadog Logs API using a sliding window."""

import asyncio
import logging
import time
from collections import deque

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Allows at most `max_requests` acquisitions per `window_seconds`.

    One instance is shared by every fetch loop of a run, sequential or
    parallel, so the aggregate request rate stays under the API ceiling.
    Waiters are served in arrival order.
    """

    def __init__(self, enabled: bool, max_requests: int, window_seconds: float,
                 time_func=None, sleep_func=None):
        if enabled and max_requests < 1:
            raise ValueError(f"max_requests must be positive, got {max_requests}")
        self._enabled = enabled
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._time_func = time_func or time.monotonic
        self._sleep_func = sleep_func or asyncio.sleep
        self._sent: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until another request fits in the current window."""
        if not self._enabled:
            return

        async with self._lock:
            while True:
                now = self._time_func()
                while self._sent and now - self._sent[0] >= self._window_seconds:
                    self._sent.popleft()

                if len(self._sent) < self._max_requests:
                    self._sent.append(now)
                    return

                delay = self._window_seconds - (now - self._sent[0])
                logger.debug("Rate limit reached, waiting %.2fs", delay)
                await self._sleep_func(delay)
