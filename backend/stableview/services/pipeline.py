"""Rate-limited, bounded-concurrency batch runner.

Separates "how many at once" (``concurrency``) from "how fast"
(``limiter``). With ``concurrency=1`` items are processed strictly in input
order.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from .rate_limiter import MinIntervalRateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class RateLimitedPipeline:
    """Runs an async worker over a batch of items."""

    def __init__(
        self,
        concurrency: int = 1,
        limiter: Optional[MinIntervalRateLimiter] = None,
        delay_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the pipeline.

        Args:
            concurrency: Maximum number of workers running at the same time
            limiter: Optional limiter acquired before each worker call
            delay_seconds: Extra pause after each item except the last (serial mode only)
            sleep: Coroutine used for the extra pause
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.limiter = limiter
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def map(self, items: Iterable[T], worker: Callable[[T], Awaitable[R]]) -> List[R]:
        """Apply ``worker`` to every item, returning results in input order.

        Worker exceptions propagate; callers that need per-item isolation
        catch inside the worker.
        """
        items = list(items)
        if self.concurrency == 1:
            return await self._map_serial(items, worker)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(item: T) -> R:
            async with semaphore:
                if self.limiter is not None:
                    await self.limiter.acquire()
                return await worker(item)

        return list(await asyncio.gather(*(run(item) for item in items)))

    async def _map_serial(self, items: List[T], worker: Callable[[T], Awaitable[R]]) -> List[R]:
        results: List[R] = []
        for index, item in enumerate(items):
            if self.limiter is not None:
                await self.limiter.acquire()
            results.append(await worker(item))

            if self.delay_seconds > 0 and index < len(items) - 1:
                await self._sleep(self.delay_seconds)
        return results
