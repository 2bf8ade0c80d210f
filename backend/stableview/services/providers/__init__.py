"""External data provider clients."""

from .base import BaseProviderClient
from .analytics import AnalyticsClient, AnalyticsMetrics, DiscoveredStablecoin
from .prices import PriceClient, PriceQuote
from .exchange_rates import ExchangeRateClient

__all__ = [
    "BaseProviderClient",
    "AnalyticsClient",
    "AnalyticsMetrics",
    "DiscoveredStablecoin",
    "PriceClient",
    "PriceQuote",
    "ExchangeRateClient",
]
