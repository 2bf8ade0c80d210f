# Business Logic Services

from .config import (
    ConfigService,
    ConfigValidationError,
    ConfigValidationException,
    config_service,
)
from .errors import (
    ProviderHTTPError,
    SafetyViolationError,
    StablecoinNotFoundError,
)
from .results import (
    Found,
    NotFound,
    Failed,
    ProviderResult,
    RefreshStatus,
    RefreshResult,
    RunSummary,
)
from .rate_limiter import MinIntervalRateLimiter
from .pipeline import RateLimitedPipeline
from .price_cache import PriceCache, PriceCacheEntry
from .stablecoin_store import (
    StablecoinStore,
    MetricsUpdate,
    SAFE_METRIC_FIELDS,
)
from .metrics_refresher import MetricsRefresher, SyncSummary
from .price_refresher import PriceRefresher
from .peg_price_refresher import PegPriceRefresher, SUPPORTED_PEG_ASSETS
from .container import ServiceContainer

__all__ = [
    # Config
    "ConfigService",
    "ConfigValidationError",
    "ConfigValidationException",
    "config_service",
    # Errors and results
    "ProviderHTTPError",
    "SafetyViolationError",
    "StablecoinNotFoundError",
    "Found",
    "NotFound",
    "Failed",
    "ProviderResult",
    "RefreshStatus",
    "RefreshResult",
    "RunSummary",
    # Rate limiting and caching
    "MinIntervalRateLimiter",
    "RateLimitedPipeline",
    "PriceCache",
    "PriceCacheEntry",
    # Store
    "StablecoinStore",
    "MetricsUpdate",
    "SAFE_METRIC_FIELDS",
    # Orchestrators
    "MetricsRefresher",
    "SyncSummary",
    "PriceRefresher",
    "PegPriceRefresher",
    "SUPPORTED_PEG_ASSETS",
    "ServiceContainer",
]
