"""
Oracle Rate Limiter
===================

Serializes outbound oracle calls and enforces a minimum delay between them.

Usage:
    limiter = RateLimiter(min_delay=1.2)
    await limiter.acquire()  # Blocks until min_delay has passed since the last call
    result = await oracle.generate(prompt)
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-delay limiter shared by every component that calls the oracle.

    Waiters are served in the order they awaited ``acquire()``; there is no
    other fairness guarantee. The clock and sleep functions are injectable so
    tests can run against a fake clock.
    """

    def __init__(
        self,
        min_delay: float = 1.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_delay = max(0.0, min_delay)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request_time: Optional[float] = None

        # Statistics
        self._total_requests = 0
        self._total_wait_time = 0.0

        logger.info(f"[RateLimiter] Initialized: min_delay={self.min_delay:.2f}s")

    async def acquire(self) -> None:
        """Block until at least ``min_delay`` has elapsed since the previous acquisition."""
        async with self._lock:
            if self._last_request_time is not None:
                elapsed = self._clock() - self._last_request_time
                wait = self.min_delay - elapsed
                if wait > 0:
                    logger.debug(f"[RateLimiter] Throttling for {wait:.2f}s")
                    self._total_wait_time += wait
                    await self._sleep(wait)
            self._last_request_time = self._clock()
            self._total_requests += 1

    @property
    def last_request_time(self) -> Optional[float]:
        return self._last_request_time

    def get_stats(self) -> dict:
        return {
            "min_delay": self.min_delay,
            "total_requests": self._total_requests,
            "total_wait_time": round(self._total_wait_time, 3),
        }
