"""In-memory token price cache.

Entries older than the TTL are treated as absent and dropped lazily on read.
The cache lives for the lifetime of the process.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_PRICE_CACHE_TTL_SECONDS = 60 * 60


@dataclass
class PriceCacheEntry:
    """Cached price for one token address."""
    token_address: str
    price: float
    timestamp: float


class PriceCache:
    """TTL cache keyed by token address."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_PRICE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, PriceCacheEntry] = {}

    def _is_expired(self, entry: PriceCacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def set(self, token_address: str, price: float) -> None:
        self._entries[token_address] = PriceCacheEntry(
            token_address=token_address,
            price=price,
            timestamp=self._clock(),
        )

    def get(self, token_address: str) -> Optional[float]:
        """Return the cached price, or None when absent or expired."""
        entry = self._entries.get(token_address)
        if entry is None:
            return None

        if self._is_expired(entry, self._clock()):
            del self._entries[token_address]
            return None

        return entry.price

    def has(self, token_address: str) -> bool:
        return self.get(token_address) is not None

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Price cache cleared")

    def get_all_valid_prices(self) -> Dict[str, float]:
        """Return every unexpired price, dropping expired entries."""
        now = self._clock()
        valid = {}
        for address, entry in list(self._entries.items()):
            if self._is_expired(entry, now):
                del self._entries[address]
            else:
                valid[address] = entry.price
        return valid

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        expired = sum(1 for e in self._entries.values() if self._is_expired(e, now))
        return {
            "total_entries": len(self._entries),
            "valid_entries": len(self._entries) - expired,
            "expired_entries": expired,
        }
