"""Composition root for the refresh services.

Owns the process-wide price rate limiter and price cache. Both are per
process: several instances of the service each enforce their own rate
ceiling.
"""

import logging
from datetime import timedelta
from typing import Optional

from .config import ConfigService
from .metrics_refresher import DEFAULT_DISCOVERY_DENYLIST, MetricsRefresher
from .peg_price_refresher import PegPriceRefresher
from .price_cache import DEFAULT_PRICE_CACHE_TTL_SECONDS, PriceCache
from .price_refresher import PriceRefresher
from .providers.analytics import AnalyticsClient
from .providers.base import DEFAULT_TIMEOUT_SECONDS
from .providers.exchange_rates import DEFAULT_RATE_TABLE_TTL_SECONDS, ExchangeRateClient
from .providers.prices import (
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_MIN_REQUEST_INTERVAL_SECONDS,
    PriceClient,
)
from .rate_limiter import MinIntervalRateLimiter
from .refresher import SessionFactory

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Builds and holds provider clients and refresh orchestrators."""

    def __init__(self, config: ConfigService, session_factory: SessionFactory):
        self.config = config
        self.session_factory = session_factory

        topledger = "providers.topledger"
        self.analytics_client = AnalyticsClient(
            supply_api_key=config.get(f"{topledger}.supply_api_key", ""),
            volume_api_key=config.get(f"{topledger}.volume_api_key", ""),
            **self._client_kwargs(topledger),
            dataset_ttl_seconds=config.get(f"{topledger}.dataset_ttl_seconds", 300),
        )

        birdeye = "providers.birdeye"
        self.rate_limiter = MinIntervalRateLimiter(
            config.get(f"{birdeye}.min_request_interval_ms", DEFAULT_MIN_REQUEST_INTERVAL_SECONDS * 1000) / 1000
        )
        self.price_cache = PriceCache(
            ttl_seconds=config.get(f"{birdeye}.cache_ttl_seconds", DEFAULT_PRICE_CACHE_TTL_SECONDS)
        )
        self.price_client = PriceClient(
            api_key=config.get(f"{birdeye}.api_key", ""),
            rate_limiter=self.rate_limiter,
            cache=self.price_cache,
            **self._client_kwargs(birdeye),
            batch_delay_seconds=config.get(f"{birdeye}.batch_delay_ms", DEFAULT_BATCH_DELAY_SECONDS * 1000) / 1000,
            chain=config.get(f"{birdeye}.chain", "solana"),
        )

        exchange_rate = "providers.exchange_rate"
        self.exchange_rate_client = ExchangeRateClient(
            api_key=config.get(f"{exchange_rate}.api_key", ""),
            **self._client_kwargs(exchange_rate),
            cache_ttl_seconds=config.get(f"{exchange_rate}.cache_ttl_seconds", DEFAULT_RATE_TABLE_TTL_SECONDS),
        )

        self.metrics_refresher = MetricsRefresher(
            session_factory,
            self.analytics_client,
            delay_seconds=config.get("refresh.metrics_delay_seconds", 1.0),
            denylist=config.get("refresh.discovery_denylist", list(DEFAULT_DISCOVERY_DENYLIST)),
            sync_before_refresh=config.get("refresh.sync_before_metrics", True),
        )
        self.price_refresher = PriceRefresher(
            session_factory,
            self.price_client,
            stale_after=timedelta(seconds=config.get("refresh.price_stale_after_seconds", 60 * 60)),
        )
        self.peg_price_refresher = PegPriceRefresher(
            session_factory,
            self.exchange_rate_client,
            stale_after=timedelta(seconds=config.get("refresh.peg_price_stale_after_seconds", 24 * 60 * 60)),
            delay_seconds=config.get("refresh.peg_price_delay_seconds", 0.2),
        )

        for name, key in (
            ("TopLedger", f"{topledger}.supply_api_key"),
            ("Birdeye", f"{birdeye}.api_key"),
            ("ExchangeRate-API", f"{exchange_rate}.api_key"),
        ):
            if not config.get(key):
                logger.warning(f"{name} API key is not configured; its requests will be rejected")

    def _client_kwargs(self, section: str) -> dict:
        kwargs = {"timeout_seconds": self.config.get(f"{section}.timeout_seconds", DEFAULT_TIMEOUT_SECONDS)}
        base_url = self.config.get(f"{section}.base_url")
        if base_url:
            kwargs["base_url"] = base_url
        return kwargs

    @property
    def cron_secret(self) -> Optional[str]:
        return self.config.get("cron.secret") or None
