"""Token price provider client (Birdeye public API).

Lookup order for one address:

1. price cache hit: no rate limiting, no network call
2. otherwise wait on the shared rate limiter, call the API, cache the price

Batches are processed serially through the same limiter so the global rate
ceiling holds under load.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .base import BaseProviderClient, PROVIDER_ERRORS, DEFAULT_TIMEOUT_SECONDS
from ..pipeline import RateLimitedPipeline
from ..price_cache import PriceCache
from ..rate_limiter import MinIntervalRateLimiter
from ..results import Failed, Found, NotFound, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_MIN_REQUEST_INTERVAL_SECONDS = 0.1
DEFAULT_BATCH_DELAY_SECONDS = 0.05


def _optional_float(value: Any) -> Optional[float]:
    """Parse an optional numeric field; anything unparseable becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass
class PriceQuote:
    """Spot price for one token."""
    price: float
    price_change_24h: Optional[float]
    last_updated: str
    update_unix_time: int
    cached: bool = False


class PriceClient(BaseProviderClient):
    """Client for the token price provider."""

    name = "Price API"

    def __init__(
        self,
        api_key: str,
        rate_limiter: MinIntervalRateLimiter,
        cache: PriceCache,
        base_url: str = "https://public-api.birdeye.so",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        chain: str = "solana",
    ):
        super().__init__(base_url, timeout_seconds)
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.chain = chain
        self._batch = RateLimitedPipeline(concurrency=1, delay_seconds=batch_delay_seconds)

    async def get_token_price(self, token_address: str) -> ProviderResult:
        """Get the spot price for a token.

        Returns:
            ``Found(PriceQuote)``, ``NotFound`` when the provider reports no
            data, or ``Failed`` on network/HTTP errors and timeouts.
        """
        cached_price = self.cache.get(token_address)
        if cached_price is not None:
            logger.debug(f"Using cached price for {token_address}: ${cached_price}")
            now = datetime.utcnow()
            return Found(PriceQuote(
                price=cached_price,
                price_change_24h=None,
                last_updated=now.isoformat(),
                update_unix_time=int(now.timestamp()),
                cached=True,
            ))

        await self.rate_limiter.acquire()

        try:
            data = await self._get_json(
                f"{self.base_url}/defi/price",
                params={"address": token_address, "ui_amount_mode": "raw"},
                headers={
                    "accept": "application/json",
                    "x-chain": self.chain,
                    "X-API-KEY": self.api_key,
                },
            )
        except PROVIDER_ERRORS as e:
            return self._failure(f"Fetching price for token {token_address}", e)

        payload = data.get("data") if isinstance(data, dict) else None
        if not isinstance(data, dict) or not data.get("success") or not payload:
            logger.info(f"Price API has no data for {token_address}")
            return NotFound(f"No price data for {token_address}")
        if not isinstance(payload, dict):
            logger.warning(f"Malformed price payload for {token_address}: {payload!r}")
            return Failed(f"Malformed price payload for {token_address}")

        value = payload.get("value")
        if value is None:
            return NotFound(f"No price data for {token_address}")

        try:
            price = float(value)
        except (TypeError, ValueError):
            return NotFound(f"Non-numeric price for {token_address}: {value!r}")

        quote = PriceQuote(
            price=price,
            price_change_24h=_optional_float(payload.get("priceChange24h")),
            last_updated=str(payload.get("updateHumanTime") or datetime.utcnow().isoformat()),
            update_unix_time=int(_optional_float(payload.get("updateUnixTime")) or 0),
        )

        self.cache.set(token_address, price)
        logger.debug(f"Cached price for {token_address}: ${price}")
        return Found(quote)

    async def get_multiple_token_prices(
        self, token_addresses: Iterable[str]
    ) -> Dict[str, ProviderResult]:
        """Fetch prices for many tokens, one at a time."""
        addresses = list(dict.fromkeys(a for a in token_addresses if a and a.strip()))
        logger.info(f"Processing {len(addresses)} token prices with rate limiting")

        results = await self._batch.map(addresses, self.get_token_price)
        by_address = dict(zip(addresses, results))

        found = sum(1 for r in results if isinstance(r, Found))
        logger.info(f"Completed fetching prices. Got {found} valid prices out of {len(addresses)} requests")
        return by_address
