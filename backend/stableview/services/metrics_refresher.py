"""Analytics metrics refresh.

A full run first reconciles the store with the analytics provider's list of
stablecoins (inserting any that are missing) and then refreshes supply,
volume, transaction and active-user metrics for every stored stablecoin, one
at a time with a pause between provider calls.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from sqlalchemy.exc import IntegrityError

from .errors import SafetyViolationError, StablecoinNotFoundError
from .pipeline import RateLimitedPipeline
from .providers.analytics import AnalyticsClient, AnalyticsMetrics, DiscoveredStablecoin
from .refresher import BaseRefresher, SessionFactory
from .results import Failed, Found, RefreshResult, RunSummary
from .stablecoin_store import (
    MetricsUpdate,
    StablecoinRef,
    StablecoinStore,
    ZEROED_METRICS,
    format_decimal,
)

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_DENYLIST = ("USD*",)


@dataclass
class SyncSummary:
    """Outcome of reconciling the store with the analytics provider."""
    created: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    error: str = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.error is None,
            "error": self.error,
            "created": len(self.created),
            "existing": len(self.existing),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "created_slugs": self.created,
            "failures": self.failed,
        }


class MetricsRefresher(BaseRefresher):
    """Orchestrates discovery and metrics refresh for all stablecoins."""

    name = "metrics"

    def __init__(
        self,
        session_factory: SessionFactory,
        analytics_client: AnalyticsClient,
        delay_seconds: float = 1.0,
        denylist: Iterable[str] = DEFAULT_DISCOVERY_DENYLIST,
        sync_before_refresh: bool = True,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(session_factory, clock)
        self.analytics_client = analytics_client
        self.delay_seconds = delay_seconds
        self.denylist = frozenset(s.lower() for s in denylist)
        self.sync_before_refresh = sync_before_refresh
        self._sleep = sleep

    def _is_denylisted(self, discovered: DiscoveredStablecoin) -> bool:
        return (discovered.name or "").lower() in self.denylist or discovered.slug in self.denylist

    async def sync_stablecoins(self) -> SyncSummary:
        """Insert every provider stablecoin that is missing from the store.

        Running this twice with no provider changes creates nothing the
        second time.
        """
        summary = SyncSummary()
        listing = await self.analytics_client.list_available_stablecoins()
        if not isinstance(listing, Found):
            summary.error = listing.error if isinstance(listing, Failed) else listing.reason
            logger.error(f"Stablecoin discovery failed: {summary.error}")
            return summary

        async with self._session_factory() as session:
            store = StablecoinStore(session)
            for discovered in listing.value:
                if self._is_denylisted(discovered):
                    logger.info(f"Skipping denylisted stablecoin {discovered.name} ({discovered.mint})")
                    summary.skipped.append(discovered.slug)
                    continue
                try:
                    created = await self._create_if_missing(store, discovered)
                except Exception as e:
                    logger.error(f"Failed to create stablecoin {discovered.slug}: {e}")
                    summary.failed[discovered.slug] = str(e)
                    continue
                (summary.created if created else summary.existing).append(discovered.slug)

        logger.info(
            f"Stablecoin sync: {len(summary.created)} created, {len(summary.existing)} existing, "
            f"{len(summary.skipped)} skipped, {len(summary.failed)} failed"
        )
        return summary

    async def _create_if_missing(self, store: StablecoinStore, discovered: DiscoveredStablecoin) -> bool:
        # Re-check right before the insert; another run may have created it.
        if await store.get_by_token_address(discovered.mint) is not None:
            return False
        if await store.get_by_slug(discovered.slug) is not None:
            return False

        try:
            await store.insert(
                slug=discovered.slug,
                name=discovered.name,
                token=discovered.name,
                token_address=discovered.mint,
                **ZEROED_METRICS,
            )
        except IntegrityError:
            logger.info(f"Stablecoin {discovered.slug} already exists, skipping")
            return False

        logger.info(f"Created stablecoin {discovered.slug} ({discovered.mint})")
        return True

    def build_update(self, stablecoin: StablecoinRef, metrics: AnalyticsMetrics) -> Dict[str, Any]:
        """Build the column values written for one stablecoin."""
        return MetricsUpdate(
            transaction_volume_30d=format_decimal(metrics.volume_30d),
            transaction_count_daily=format_decimal(metrics.transaction_count_30d),
            total_supply=format_decimal(metrics.total_supply),
            daily_active_users=format_decimal(metrics.daily_active_users),
            updated_at=self._clock(),
        ).to_values()

    async def _refresh_stablecoin(self, store: StablecoinStore, stablecoin: StablecoinRef) -> RefreshResult:
        try:
            mint = stablecoin.token_address or self.analytics_client.get_mint_from_slug(stablecoin.slug)
            if not mint:
                return RefreshResult.failed(stablecoin.id, "No token address available")

            result = await self.analytics_client.get_latest_data_for_mint(mint)
            if isinstance(result, Failed):
                return RefreshResult.failed(stablecoin.id, result.error)
            if not isinstance(result, Found):
                logger.info(f"No metrics data for {stablecoin.slug}")
                return RefreshResult.skipped(stablecoin.id, result.reason)

            values = self.build_update(stablecoin, result.value)
            await store.update_metrics(stablecoin.id, values)
        except SafetyViolationError as e:
            return RefreshResult.failed(stablecoin.id, str(e))
        except Exception as e:
            logger.error(f"Error refreshing metrics for {stablecoin.slug}: {e}")
            return RefreshResult.failed(stablecoin.id, str(e))

        logger.info(f"Updated metrics for {stablecoin.slug}")
        written = {k: v for k, v in values.items() if k != "updated_at"}
        return RefreshResult.updated(stablecoin.id, written)

    async def refresh_all(self) -> RunSummary:
        """Sync (optionally) and refresh metrics for every stored stablecoin.

        Raises:
            Exception: Only when the stablecoins cannot be listed.
        """
        async with self._lock:
            summary = RunSummary(self.name)
            if self.sync_before_refresh:
                summary.details["sync"] = (await self.sync_stablecoins()).to_dict()

            async with self._session_factory() as session:
                store = StablecoinStore(session)
                stablecoins = [StablecoinRef.from_row(c) for c in await store.list_all()]
                logger.info(f"Refreshing metrics for {len(stablecoins)} stablecoins")

                pipeline = RateLimitedPipeline(
                    concurrency=1, delay_seconds=self.delay_seconds, sleep=self._sleep
                )
                summary.results = await pipeline.map(
                    stablecoins, lambda coin: self._refresh_stablecoin(store, coin)
                )
            return summary

    async def refresh_one(self, stablecoin_id: int) -> RefreshResult:
        """Refresh metrics for one stablecoin.

        Raises:
            StablecoinNotFoundError: If the id is unknown.
        """
        async with self._session_factory() as session:
            store = StablecoinStore(session)
            stablecoin = await store.get(stablecoin_id)
            if stablecoin is None:
                raise StablecoinNotFoundError(stablecoin_id)
            return await self._refresh_stablecoin(store, StablecoinRef.from_row(stablecoin))
