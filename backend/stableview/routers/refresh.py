"""Manual refresh trigger router.

Run endpoints always answer 200 with a per-stablecoin tally, even when some
or all stablecoins failed.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from ..services.container import ServiceContainer
from ..services.errors import StablecoinNotFoundError
from ..services.refresher import BaseRefresher
from ..services.results import RefreshResult
from .deps import get_services

router = APIRouter()


async def _run(refresher: BaseRefresher) -> dict:
    summary = await refresher.run()
    return summary.to_dict()


async def _refresh_one(refresher: BaseRefresher, stablecoin_id: int) -> dict:
    try:
        result: RefreshResult = await refresher.refresh_one(stablecoin_id)
    except StablecoinNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return result.to_dict()


@router.post("/metrics")
async def refresh_metrics(services: ServiceContainer = Depends(get_services)):
    """Sync new stablecoins and refresh analytics metrics for all of them."""
    return await _run(services.metrics_refresher)


@router.post("/sync")
async def sync_stablecoins(services: ServiceContainer = Depends(get_services)):
    """Insert stablecoins known to the analytics provider but missing locally."""
    summary = await services.metrics_refresher.sync_stablecoins()
    return summary.to_dict()


@router.post("/prices")
async def refresh_prices(services: ServiceContainer = Depends(get_services)):
    """Refresh spot prices for all stablecoins."""
    return await _run(services.price_refresher)


@router.post("/prices/{stablecoin_id}")
async def refresh_price(stablecoin_id: int, services: ServiceContainer = Depends(get_services)):
    """Refresh the spot price of one stablecoin."""
    return await _refresh_one(services.price_refresher, stablecoin_id)


@router.post("/peg-prices")
async def refresh_peg_prices(services: ServiceContainer = Depends(get_services)):
    """Refresh peg prices for all stablecoins with a pegged asset."""
    return await _run(services.peg_price_refresher)


@router.post("/peg-prices/{stablecoin_id}")
async def refresh_peg_price(stablecoin_id: int, services: ServiceContainer = Depends(get_services)):
    """Refresh the peg price of one stablecoin."""
    return await _refresh_one(services.peg_price_refresher, stablecoin_id)


@router.get("/price-cache")
async def price_cache_stats(services: ServiceContainer = Depends(get_services)):
    """Get price cache statistics."""
    return services.price_cache.stats()


@router.delete("/price-cache")
async def clear_price_cache(services: ServiceContainer = Depends(get_services)):
    """Drop every cached price."""
    services.price_cache.clear()
    return {"message": "Price cache cleared", **services.price_cache.stats()}
