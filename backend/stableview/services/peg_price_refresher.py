"""Peg price refresh and staleness-gated peg price reads.

The peg price of a stablecoin is the USD value of one unit of the asset it is
pegged to. Stablecoins are grouped by pegged asset so each asset costs one
exchange-rate lookup per run, and every member of a group gets the same
value in a single write.
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List

from ..models import Stablecoin
from .errors import StablecoinNotFoundError
from .pipeline import RateLimitedPipeline
from .providers.exchange_rates import ExchangeRateClient
from .refresher import BaseRefresher, SessionFactory, is_stale
from .results import Found, ProviderResult, RefreshResult, RunSummary
from .stablecoin_store import StablecoinStore

logger = logging.getLogger(__name__)

DEFAULT_PEG_STALE_AFTER = timedelta(hours=24)
USD = "USD"

SUPPORTED_PEG_ASSETS = frozenset({
    # Fiat
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "CNY", "INR", "BRL",
    "MXN", "TRY", "ZAR", "NGN", "KRW", "SGD", "HKD", "NZD", "SEK", "NOK",
    "DKK", "PLN", "CZK", "HUF", "RUB", "UAH", "THB", "PHP", "IDR", "MYR",
    "VND", "AED", "SAR", "QAR", "KWD", "BHD", "OMR", "JOD", "LBP", "EGP",
    "MAD", "TND", "DZD", "LYD", "ETB", "KES", "UGX", "TZS", "ZMW", "BWP",
    "SZL", "LSL", "NAD", "MUR", "SCR", "MVR", "KMF", "DJF", "ERN", "SOS",
    "SLL", "GMD", "GNF", "LRD", "CDF", "AOA", "XAF", "XOF", "XPF",
    # Crypto
    "BTC", "ETH", "BNB", "XRP", "ADA", "SOL", "DOT", "MATIC", "AVAX", "LINK",
    "UNI", "LTC", "BCH", "XLM", "ATOM", "VET", "FIL", "TRX", "ETC", "XMR",
    "ZEC", "DASH", "NEO", "EOS", "XTZ", "ALGO", "ICP", "FTM", "HBAR", "MANA",
    "SAND", "AXS", "CHZ", "FLOW", "NEAR", "COMP", "YFI", "SNX", "MKR", "AAVE",
    "CRV", "BAT", "ZRX", "DOGE", "SHIB", "PEPE", "BONK", "WIF",
})


class PegPriceRefresher(BaseRefresher):
    """Refreshes peg prices and serves them with a staleness gate."""

    name = "peg-prices"

    def __init__(
        self,
        session_factory: SessionFactory,
        exchange_rate_client: ExchangeRateClient,
        stale_after: timedelta = DEFAULT_PEG_STALE_AFTER,
        delay_seconds: float = 0.2,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(session_factory, clock)
        self.exchange_rate_client = exchange_rate_client
        self.stale_after = stale_after
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def _lookup(self, asset: str) -> ProviderResult:
        if asset == USD:
            return Found(1.0)
        return await self.exchange_rate_client.get_exchange_rate(asset, USD)

    async def _refresh_group(
        self, store: StablecoinStore, asset: str, stablecoin_ids: List[int]
    ) -> List[RefreshResult]:
        def fail_all(error: str) -> List[RefreshResult]:
            return [RefreshResult.failed(i, error, pegged_asset=asset) for i in stablecoin_ids]

        if asset not in SUPPORTED_PEG_ASSETS:
            logger.warning(f"Unsupported pegged asset: {asset}")
            return fail_all(f"Unsupported pegged asset: {asset}")

        try:
            result = await self._lookup(asset)
            if not isinstance(result, Found):
                logger.warning(f"Failed to get exchange rate for {asset}")
                return fail_all(f"Failed to get exchange rate for {asset}")

            rate = result.value
            await store.update_peg_price(stablecoin_ids, rate, self._clock())
        except Exception as e:
            logger.error(f"Error processing peg prices for {asset}: {e}")
            return fail_all(str(e))

        logger.info(f"Updated peg price for {len(stablecoin_ids)} stablecoins pegged to {asset}: ${rate}")
        return [RefreshResult.updated(i, rate, pegged_asset=asset) for i in stablecoin_ids]

    async def refresh_all(self) -> RunSummary:
        """Refresh peg prices for every stablecoin that has a pegged asset."""
        async with self._lock:
            summary = RunSummary(self.name)
            async with self._session_factory() as session:
                store = StablecoinStore(session)
                stablecoins = await store.list_with_pegged_asset()
                if not stablecoins:
                    logger.info("No stablecoins with pegged assets found to update")
                    return summary

                groups: Dict[str, List[int]] = OrderedDict()
                for coin in stablecoins:
                    groups.setdefault(coin.pegged_asset.strip().upper(), []).append(coin.id)
                logger.info(
                    f"Updating peg prices for {len(stablecoins)} stablecoins across {len(groups)} assets"
                )

                pipeline = RateLimitedPipeline(
                    concurrency=1, delay_seconds=self.delay_seconds, sleep=self._sleep
                )
                grouped = await pipeline.map(
                    list(groups.items()),
                    lambda item: self._refresh_group(store, item[0], item[1]),
                )
                for results in grouped:
                    summary.results.extend(results)
            return summary

    async def refresh_one(self, stablecoin_id: int) -> RefreshResult:
        """Refresh the peg price of one stablecoin.

        Raises:
            StablecoinNotFoundError: If the id is unknown.
        """
        async with self._session_factory() as session:
            store = StablecoinStore(session)
            stablecoin = await store.get(stablecoin_id)
            if stablecoin is None:
                raise StablecoinNotFoundError(stablecoin_id)
            if not (stablecoin.pegged_asset or "").strip():
                return RefreshResult.failed(stablecoin_id, "No pegged asset specified")

            asset = stablecoin.pegged_asset.strip().upper()
            results = await self._refresh_group(store, asset, [stablecoin_id])
            return results[0]

    def _snapshot(self, stablecoin: Stablecoin, now: datetime, refreshed: bool) -> Dict[str, Any]:
        return {
            "stablecoin_id": stablecoin.id,
            "name": stablecoin.name,
            "pegged_asset": stablecoin.pegged_asset,
            "peg_price": stablecoin.peg_price,
            "last_updated": stablecoin.peg_price_updated_at,
            "is_stale": is_stale(stablecoin.peg_price_updated_at, self.stale_after, now),
            "refreshed": refreshed,
        }

    async def get_peg_price(self, stablecoin_id: int) -> Dict[str, Any]:
        """Read one peg price, refreshing it first when it is stale.

        A failed refresh falls back to the stored value.

        Raises:
            StablecoinNotFoundError: If the id is unknown.
        """
        async with self._session_factory() as session:
            stablecoin = await StablecoinStore(session).get(stablecoin_id)
            if stablecoin is None:
                raise StablecoinNotFoundError(stablecoin_id)
            stale = is_stale(stablecoin.peg_price_updated_at, self.stale_after, self._clock())
            has_asset = bool((stablecoin.pegged_asset or "").strip())

        refreshed = False
        if stale and has_asset:
            logger.info(f"Peg price for stablecoin {stablecoin_id} is stale, refreshing")
            try:
                result = await self.refresh_one(stablecoin_id)
            except StablecoinNotFoundError:
                raise
            except Exception as e:
                logger.error(f"Peg price refresh for stablecoin {stablecoin_id} raised: {e}")
            else:
                refreshed = result.success
                if not refreshed:
                    logger.warning(f"Peg price refresh for stablecoin {stablecoin_id} failed: {result.error}")

        async with self._session_factory() as session:
            stablecoin = await StablecoinStore(session).get(stablecoin_id)
            return self._snapshot(stablecoin, self._clock(), refreshed)

    async def get_all_peg_prices(self) -> List[Dict[str, Any]]:
        """Read every peg price, running a full refresh first if any is stale."""
        async with self._session_factory() as session:
            stablecoins = await StablecoinStore(session).list_with_pegged_asset()
            now = self._clock()
            any_stale = any(is_stale(c.peg_price_updated_at, self.stale_after, now) for c in stablecoins)

        refreshed = False
        if any_stale:
            logger.info("Some peg prices are stale, refreshing all peg prices")
            summary = await self.run()
            refreshed = summary.success

        async with self._session_factory() as session:
            stablecoins = await StablecoinStore(session).list_with_pegged_asset()
            now = self._clock()
            return [self._snapshot(c, now, refreshed) for c in stablecoins]
