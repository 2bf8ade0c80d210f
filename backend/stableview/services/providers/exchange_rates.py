"""Currency exchange-rate provider client (ExchangeRate-API v6).

Full rate tables are cached per base currency so that many pegged assets
sharing a base cost one request per TTL window.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Tuple

from .base import BaseProviderClient, PROVIDER_ERRORS, DEFAULT_TIMEOUT_SECONDS
from ..results import Failed, Found, NotFound, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_RATE_TABLE_TTL_SECONDS = 60 * 60


class ExchangeRateClient(BaseProviderClient):
    """Client for the exchange-rate provider."""

    name = "Exchange Rate API"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://v6.exchangerate-api.com/v6",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cache_ttl_seconds: float = DEFAULT_RATE_TABLE_TTL_SECONDS,
        batch_size: int = 3,
        batch_delay_seconds: float = 0.2,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(base_url, timeout_seconds)
        self.api_key = api_key
        self.cache_ttl_seconds = cache_ttl_seconds
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self._clock = clock
        self._tables: Dict[str, Tuple[float, Dict[str, float]]] = {}

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": "StableView/1.0"}

    async def _fetch_rate_table(self, base_currency: str) -> Dict[str, float]:
        data = await self._get_json(
            f"{self.base_url}/{self.api_key}/latest/{base_currency}",
            headers=self._headers,
        )
        if not isinstance(data, dict) or data.get("result") != "success":
            result = data.get("result") if isinstance(data, dict) else data
            raise ValueError(f"API returned error: {result}")
        return data.get("conversion_rates") or {}

    async def get_rate_table(self, base_currency: str) -> ProviderResult:
        """Get the full conversion table for a base currency (cached)."""
        base = base_currency.upper()
        cached = self._tables.get(base)
        if cached is not None and self._clock() - cached[0] < self.cache_ttl_seconds:
            logger.debug(f"Using cached currency data for {base}")
            return Found(cached[1])

        try:
            table = await self._fetch_rate_table(base)
        except PROVIDER_ERRORS as e:
            return self._failure(f"Fetching exchange rate data for {base}", e)

        self._tables[base] = (self._clock(), table)
        logger.info(f"Fetched exchange rate data for {base} ({len(table)} currencies)")
        return Found(table)

    async def get_exchange_rate(self, from_currency: str, to_currency: str = "USD") -> ProviderResult:
        """Get the rate converting one unit of ``from_currency`` into ``to_currency``.

        Identical currencies return ``Found(1.0)`` without a network call.
        """
        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return Found(1.0)

        table_result = await self.get_rate_table(source)
        if not isinstance(table_result, Found):
            return table_result

        rate = table_result.value.get(target)
        if rate is None:
            return NotFound(f"No rate from {source} to {target}")

        logger.info(f"Exchange rate {source} to {target}: {rate}")
        return Found(float(rate))

    async def get_pair_rate(self, from_currency: str, to_currency: str = "USD") -> ProviderResult:
        """Get a single rate from the pair endpoint (not cached)."""
        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return Found(1.0)

        try:
            data = await self._get_json(
                f"{self.base_url}/{self.api_key}/pair/{source}/{target}",
                headers=self._headers,
            )
            if not isinstance(data, dict) or data.get("result") != "success":
                result = data.get("result") if isinstance(data, dict) else data
                raise ValueError(f"API returned error: {result}")
        except PROVIDER_ERRORS as e:
            return self._failure(f"Fetching exchange rate pair {source}/{target}", e)

        rate = data.get("conversion_rate")
        if rate is None:
            return NotFound(f"No rate from {source} to {target}")
        return Found(float(rate))

    async def get_multiple_exchange_rates(
        self, from_currencies: Iterable[str], to_currency: str = "USD"
    ) -> Dict[str, ProviderResult]:
        """Get rates for many currencies in small concurrent batches."""
        currencies = list(dict.fromkeys(c.upper() for c in from_currencies))
        results: Dict[str, ProviderResult] = {}

        for start in range(0, len(currencies), self.batch_size):
            batch = currencies[start:start + self.batch_size]
            rates = await asyncio.gather(*(self.get_exchange_rate(c, to_currency) for c in batch))
            results.update(zip(batch, rates))

            if start + self.batch_size < len(currencies):
                await asyncio.sleep(self.batch_delay_seconds)

        return results

    async def get_available_currencies(self) -> List[str]:
        result = await self.get_rate_table("USD")
        if isinstance(result, Failed):
            return []
        return sorted(result.value.keys())

    def clear_cache(self) -> None:
        self._tables.clear()
        logger.info("Currency cache cleared")
