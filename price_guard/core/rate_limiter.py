"""
Client-side throttle for rate-limited providers.

Spaces outbound call starts by a minimum interval. The marker is a single
value shared by every lookup that goes through the limiter.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Exclusive, interval-based gate for outbound calls.

    Acquisition is serialized with a lock that stays held for the whole
    fetch, so only one caller is ever inside its post-acquire window.
    The "last request" marker is set when the gate opens, which makes the
    interval measured between call starts.
    """

    def __init__(
        self,
        min_interval: float = 12.0,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the limiter.

        Args:
            min_interval: Seconds required between consecutive call starts
            clock: Monotonic seconds source (defaults to the event loop clock)
            sleep: Coroutine used to wait (defaults to asyncio.sleep)
        """
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    @property
    def last_request(self) -> Optional[float]:
        return self._last_request

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        """Wait for the interval to elapse, then hold the gate for the call."""
        async with self._lock:
            if self._last_request is not None:
                wait = self.min_interval - (self._now() - self._last_request)
                if wait > 0:
                    logger.info("Rate limiting: waiting %.1fs before next request", wait)
                    await self._sleep(wait)
            self._last_request = self._now()
            yield
