"""Minimum-interval request throttle.

A leaky bucket of size one: consecutive dispatches are spaced at least
``min_interval`` seconds apart. There is no bursting.

State is held per instance and is process-local. Several processes sharing one
provider API key each enforce their own floor, so a multi-instance deployment
can exceed the provider's rate ceiling.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class MinIntervalRateLimiter:
    """Enforces a floor on the spacing between outbound requests."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the limiter.

        Args:
            min_interval: Minimum seconds between two dispatches
            clock: Monotonic clock returning seconds
            sleep: Coroutine used to wait
        """
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def last_dispatch(self) -> Optional[float]:
        return self._last_dispatch

    async def acquire(self) -> float:
        """Wait until the next request may be dispatched.

        Returns:
            The clock value recorded as the dispatch time.
        """
        async with self._lock:
            if self._last_dispatch is not None:
                elapsed = self._clock() - self._last_dispatch
                delay = self.min_interval - elapsed
                if delay > 0:
                    logger.debug(f"Rate limiting: waiting {delay * 1000:.0f}ms before next request")
                    await self._sleep(delay)
            self._last_dispatch = self._clock()
            return self._last_dispatch

    def reset(self) -> None:
        """Forget the last dispatch time."""
        self._last_dispatch = None
