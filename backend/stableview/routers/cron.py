"""Scheduled refresh router.

Called by an external scheduler with ``Authorization: Bearer <cron secret>``.
Answers 200 with the run tally when the run completed (even if stablecoins
failed) and 500 only when the run itself aborted.
"""

import asyncio
import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from ..services.container import ServiceContainer
from ..services.results import RunSummary
from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> None:
    """Reject the request unless it carries the configured bearer secret."""
    secret = services.cron_secret
    if not secret:
        logger.error("Cron request rejected: no cron secret is configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    expected = f"Bearer {secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        logger.warning("Cron request rejected: invalid authorization header")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _respond(job: str, summaries: List[RunSummary]) -> dict:
    aborted = [s for s in summaries if not s.success]
    if aborted:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "job": job,
                "error": "; ".join(f"{s.name}: {s.error}" for s in aborted),
            },
        )
    return {
        "job": job,
        "success": True,
        "runs": {s.name: s.to_dict() for s in summaries},
    }


@router.post("/update-metrics", dependencies=[Depends(verify_cron_secret)])
async def cron_update_metrics(services: ServiceContainer = Depends(get_services)):
    """Scheduled metrics refresh (includes stablecoin sync)."""
    summary = await services.metrics_refresher.run()
    return _respond("update-metrics", [summary])


@router.post("/update-prices", dependencies=[Depends(verify_cron_secret)])
async def cron_update_prices(services: ServiceContainer = Depends(get_services)):
    """Scheduled price and peg price refresh."""
    summaries = await asyncio.gather(
        services.price_refresher.run(),
        services.peg_price_refresher.run(),
    )
    return _respond("update-prices", list(summaries))


@router.post("/update-peg-prices", dependencies=[Depends(verify_cron_secret)])
async def cron_update_peg_prices(services: ServiceContainer = Depends(get_services)):
    """Scheduled peg price refresh."""
    summary = await services.peg_price_refresher.run()
    return _respond("update-peg-prices", [summary])
