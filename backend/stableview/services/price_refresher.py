"""Spot price refresh and staleness-gated price reads."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..models import PRICE_NOT_AVAILABLE, Stablecoin
from .errors import StablecoinNotFoundError
from .providers.prices import PriceClient
from .refresher import BaseRefresher, SessionFactory, is_stale
from .results import Failed, Found, ProviderResult, RefreshResult, RunSummary
from .stablecoin_store import StablecoinRef, StablecoinStore, format_decimal

logger = logging.getLogger(__name__)

DEFAULT_PRICE_STALE_AFTER = timedelta(hours=1)


def _price_value(raw: Optional[str]) -> Any:
    """Stored prices are decimal strings, the "N/A" sentinel or NULL."""
    if raw is None or raw == PRICE_NOT_AVAILABLE:
        return raw
    try:
        return float(raw)
    except ValueError:
        return raw


class PriceRefresher(BaseRefresher):
    """Refreshes token prices and serves them with a staleness gate."""

    name = "prices"

    def __init__(
        self,
        session_factory: SessionFactory,
        price_client: PriceClient,
        stale_after: timedelta = DEFAULT_PRICE_STALE_AFTER,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        super().__init__(session_factory, clock)
        self.price_client = price_client
        self.stale_after = stale_after

    async def _apply(
        self, store: StablecoinStore, stablecoin: StablecoinRef, result: ProviderResult
    ) -> RefreshResult:
        try:
            if isinstance(result, Failed):
                return RefreshResult.failed(stablecoin.id, result.error)

            if isinstance(result, Found):
                quote = result.value
                # Cached quotes carry no 24h change; keep the stored one.
                await store.update_price(
                    stablecoin.id,
                    format_decimal(quote.price),
                    quote.price_change_24h,
                    self._clock(),
                    keep_price_change=quote.cached,
                )
                logger.info(f"Updated price for {stablecoin.name}: ${quote.price}")
                return RefreshResult.updated(
                    stablecoin.id, quote.price, price_change_24h=quote.price_change_24h
                )

            # Provider confirmed there is no price: record it as known absent.
            await store.update_price(stablecoin.id, PRICE_NOT_AVAILABLE, None, self._clock())
            logger.info(f"No price for {stablecoin.name}, stored {PRICE_NOT_AVAILABLE}")
            return RefreshResult.updated(stablecoin.id, PRICE_NOT_AVAILABLE, reason=result.reason)
        except Exception as e:
            logger.error(f"Error updating price for stablecoin {stablecoin.id}: {e}")
            return RefreshResult.failed(stablecoin.id, str(e))

    async def refresh_all(self) -> RunSummary:
        """Fetch prices for every stablecoin in one serial batch and store them."""
        async with self._lock:
            summary = RunSummary(self.name)
            async with self._session_factory() as session:
                store = StablecoinStore(session)
                stablecoins = [StablecoinRef.from_row(c) for c in await store.list_all()]
                logger.info(f"Refreshing prices for {len(stablecoins)} stablecoins")

                addresses = [c.token_address for c in stablecoins if c.token_address]
                quotes = await self.price_client.get_multiple_token_prices(addresses)

                for stablecoin in stablecoins:
                    if not stablecoin.token_address:
                        summary.results.append(
                            RefreshResult.failed(stablecoin.id, "No token address available")
                        )
                        continue
                    result = quotes.get(stablecoin.token_address)
                    if result is None:
                        result = Failed(f"No price lookup made for {stablecoin.token_address}")
                    summary.results.append(await self._apply(store, stablecoin, result))
            return summary

    async def refresh_one(self, stablecoin_id: int) -> RefreshResult:
        """Refresh the price of one stablecoin.

        Raises:
            StablecoinNotFoundError: If the id is unknown.
        """
        async with self._session_factory() as session:
            store = StablecoinStore(session)
            stablecoin = await store.get(stablecoin_id)
            if stablecoin is None:
                raise StablecoinNotFoundError(stablecoin_id)
            if not stablecoin.token_address:
                return RefreshResult.failed(stablecoin_id, "No token address available")

            ref = StablecoinRef.from_row(stablecoin)
            result = await self.price_client.get_token_price(ref.token_address)
            return await self._apply(store, ref, result)

    def _snapshot(self, stablecoin: Stablecoin, now: datetime, refreshed: bool) -> Dict[str, Any]:
        return {
            "stablecoin_id": stablecoin.id,
            "name": stablecoin.name,
            "token": stablecoin.token,
            "token_address": stablecoin.token_address,
            "price": _price_value(stablecoin.price),
            "price_change_24h": stablecoin.price_change_24h,
            "last_updated": stablecoin.price_updated_at,
            "is_stale": is_stale(stablecoin.price_updated_at, self.stale_after, now),
            "refreshed": refreshed,
        }

    async def get_price(self, stablecoin_id: int) -> Dict[str, Any]:
        """Read one price, refreshing it first when it is stale.

        A failed refresh falls back to the stored value.

        Raises:
            StablecoinNotFoundError: If the id is unknown.
        """
        async with self._session_factory() as session:
            stablecoin = await StablecoinStore(session).get(stablecoin_id)
            if stablecoin is None:
                raise StablecoinNotFoundError(stablecoin_id)
            stale = is_stale(stablecoin.price_updated_at, self.stale_after, self._clock())

        refreshed = False
        if stale:
            logger.info(f"Price for stablecoin {stablecoin_id} is stale, refreshing")
            try:
                result = await self.refresh_one(stablecoin_id)
            except StablecoinNotFoundError:
                raise
            except Exception as e:
                logger.error(f"Price refresh for stablecoin {stablecoin_id} raised: {e}")
            else:
                refreshed = result.success
                if not refreshed:
                    logger.warning(f"Price refresh for stablecoin {stablecoin_id} failed: {result.error}")

        async with self._session_factory() as session:
            stablecoin = await StablecoinStore(session).get(stablecoin_id)
            return self._snapshot(stablecoin, self._clock(), refreshed)

    async def get_all_prices(self) -> List[Dict[str, Any]]:
        """Read every price, running a full refresh first if any is stale."""
        async with self._session_factory() as session:
            stablecoins = await StablecoinStore(session).list_all()
            now = self._clock()
            any_stale = any(is_stale(c.price_updated_at, self.stale_after, now) for c in stablecoins)

        refreshed = False
        if any_stale:
            logger.info("Some prices are stale, refreshing all prices")
            summary = await self.run()
            refreshed = summary.success

        async with self._session_factory() as session:
            stablecoins = await StablecoinStore(session).list_all()
            now = self._clock()
            return [self._snapshot(c, now, refreshed) for c in stablecoins]
