"""Request spacing and concurrency bound shared by concurrent scrapes."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from utils.logger import get_logger

logger = get_logger(__name__)


class RateLimitGate:
    """Enforces ``60 / requests_per_minute`` seconds between request starts.

    Callers over budget sleep instead of failing. ``slot()`` additionally
    bounds how many scrapes run at once.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        concurrent: int = 1,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.enabled = enabled
        self.min_interval = 60.0 / requests_per_minute
        self.concurrent = max(1, concurrent)
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._last_request: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self.stats = {"acquired": 0, "throttled": 0, "total_wait": 0.0}

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def slot(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.concurrent)
        return self._semaphore

    async def acquire(self) -> float:
        """Wait until the next request may start; returns seconds waited."""
        if not self.enabled:
            return 0.0

        async with self._get_lock():
            waited = 0.0
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self.stats["throttled"] += 1
                    self.stats["total_wait"] += waited
                    logger.debug("Rate limit: waiting %.2fs", waited)
                    await self._sleep(waited)
            self._last_request = self._clock()
            self.stats["acquired"] += 1
            return waited
