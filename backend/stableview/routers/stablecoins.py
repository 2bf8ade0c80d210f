"""Stablecoin read router.

Price and peg price reads are staleness-gated: a stale value is refreshed
before the response is built, and the stored value is returned if that
refresh fails.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import get_session, Stablecoin
from ..services.container import ServiceContainer
from ..services.errors import StablecoinNotFoundError
from ..services.providers.analytics import to_number
from ..services.stablecoin_store import StablecoinStore
from .deps import get_services

router = APIRouter()

PriceValue = Union[float, str, None]


class StablecoinResponse(BaseModel):
    """Schema for a stablecoin row."""
    id: int
    slug: str
    name: str
    token: str
    peggedAsset: Optional[str]
    issuer: Optional[str]
    tokenProgram: Optional[str]
    tokenAddress: Optional[str]
    mintAuthority: Optional[str]
    solscanLink: Optional[str]
    artemisLink: Optional[str]
    assetReservesLink: Optional[str]
    transactionVolume30d: str
    transactionCountDaily: str
    totalSupply: str
    dailyActiveUsers: str
    price: PriceValue
    priceChange24h: Optional[float]
    priceUpdatedAt: Optional[datetime]
    pegPrice: Optional[float]
    pegPriceUpdatedAt: Optional[datetime]
    marketCap: float
    executiveSummary: Optional[str]
    logoUrl: Optional[str]
    createdAt: Optional[datetime]
    updatedAt: Optional[datetime]


class CurrencyPegGroup(BaseModel):
    """Stablecoins sharing one pegged asset."""
    peggedAsset: str
    count: int
    totalSupply: float
    stablecoins: List[StablecoinResponse]


class PriceResponse(BaseModel):
    """Schema for a staleness-gated price read."""
    stablecoinId: int
    name: str
    token: str
    tokenAddress: Optional[str]
    price: PriceValue
    priceChange24h: Optional[float]
    lastUpdated: Optional[datetime]
    isStale: bool
    refreshed: bool


class PegPriceResponse(BaseModel):
    """Schema for a staleness-gated peg price read."""
    stablecoinId: int
    name: str
    peggedAsset: Optional[str]
    pegPrice: Optional[float]
    lastUpdated: Optional[datetime]
    isStale: bool
    refreshed: bool


def _price_value(raw: Optional[str]) -> PriceValue:
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return raw


def stablecoin_to_response(coin: Stablecoin) -> StablecoinResponse:
    """Reshape an ORM row into the camelCase API schema."""
    return StablecoinResponse(
        id=coin.id,
        slug=coin.slug,
        name=coin.name,
        token=coin.token,
        peggedAsset=coin.pegged_asset,
        issuer=coin.issuer,
        tokenProgram=coin.token_program,
        tokenAddress=coin.token_address,
        mintAuthority=coin.mint_authority,
        solscanLink=coin.solscan_link,
        artemisLink=coin.artemis_link,
        assetReservesLink=coin.asset_reserves_link,
        transactionVolume30d=coin.transaction_volume_30d or "0",
        transactionCountDaily=coin.transaction_count_daily or "0",
        totalSupply=coin.total_supply or "0",
        dailyActiveUsers=coin.daily_active_users or "0",
        price=_price_value(coin.price),
        priceChange24h=coin.price_change_24h,
        priceUpdatedAt=coin.price_updated_at,
        pegPrice=coin.peg_price,
        pegPriceUpdatedAt=coin.peg_price_updated_at,
        marketCap=coin.market_cap,
        executiveSummary=coin.executive_summary,
        logoUrl=coin.logo_url,
        createdAt=coin.created_at,
        updatedAt=coin.updated_at,
    )


def _price_response(snapshot: Dict[str, Any]) -> PriceResponse:
    return PriceResponse(
        stablecoinId=snapshot["stablecoin_id"],
        name=snapshot["name"],
        token=snapshot["token"],
        tokenAddress=snapshot["token_address"],
        price=snapshot["price"],
        priceChange24h=snapshot["price_change_24h"],
        lastUpdated=snapshot["last_updated"],
        isStale=snapshot["is_stale"],
        refreshed=snapshot["refreshed"],
    )


def _peg_price_response(snapshot: Dict[str, Any]) -> PegPriceResponse:
    return PegPriceResponse(
        stablecoinId=snapshot["stablecoin_id"],
        name=snapshot["name"],
        peggedAsset=snapshot["pegged_asset"],
        pegPrice=snapshot["peg_price"],
        lastUpdated=snapshot["last_updated"],
        isStale=snapshot["is_stale"],
        refreshed=snapshot["refreshed"],
    )


def _not_found(stablecoin_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Stablecoin with id {stablecoin_id} not found",
    )


@router.get("", response_model=List[StablecoinResponse])
async def list_stablecoins(session: AsyncSession = Depends(get_session)):
    """List all tracked stablecoins."""
    coins = await StablecoinStore(session).list_all()
    return [stablecoin_to_response(c) for c in coins]


@router.get("/by-currency-peg", response_model=List[CurrencyPegGroup])
async def list_by_currency_peg(session: AsyncSession = Depends(get_session)):
    """Group stablecoins by pegged asset, largest total supply first."""
    groups: Dict[str, List[Stablecoin]] = OrderedDict()
    for coin in await StablecoinStore(session).list_all():
        asset = (coin.pegged_asset or "").strip().upper() or "UNKNOWN"
        groups.setdefault(asset, []).append(coin)

    result = []
    for asset, coins in groups.items():
        total_supply = sum(to_number(c.total_supply) for c in coins)
        result.append(CurrencyPegGroup(
            peggedAsset=asset,
            count=len(coins),
            totalSupply=total_supply,
            stablecoins=[stablecoin_to_response(c) for c in coins],
        ))
    result.sort(key=lambda g: g.totalSupply, reverse=True)
    return result


@router.get("/prices", response_model=List[PriceResponse])
async def get_all_prices(services: ServiceContainer = Depends(get_services)):
    """Get every price, refreshing all prices first if any is older than the threshold."""
    snapshots = await services.price_refresher.get_all_prices()
    return [_price_response(s) for s in snapshots]


@router.get("/peg-prices", response_model=List[PegPriceResponse])
async def get_all_peg_prices(services: ServiceContainer = Depends(get_services)):
    """Get every peg price, refreshing first if any is older than the threshold."""
    snapshots = await services.peg_price_refresher.get_all_peg_prices()
    return [_peg_price_response(s) for s in snapshots]


@router.get("/{stablecoin_id}", response_model=StablecoinResponse)
async def get_stablecoin(stablecoin_id: int, session: AsyncSession = Depends(get_session)):
    """Get a stablecoin by ID."""
    coin = await StablecoinStore(session).get(stablecoin_id)
    if coin is None:
        raise _not_found(stablecoin_id)
    return stablecoin_to_response(coin)


@router.get("/{stablecoin_id}/price", response_model=PriceResponse)
async def get_price(stablecoin_id: int, services: ServiceContainer = Depends(get_services)):
    """Get one price, refreshing it first when stale."""
    try:
        snapshot = await services.price_refresher.get_price(stablecoin_id)
    except StablecoinNotFoundError:
        raise _not_found(stablecoin_id)
    return _price_response(snapshot)


@router.get("/{stablecoin_id}/peg-price", response_model=PegPriceResponse)
async def get_peg_price(stablecoin_id: int, services: ServiceContainer = Depends(get_services)):
    """Get one peg price, refreshing it first when stale."""
    try:
        snapshot = await services.peg_price_refresher.get_peg_price(stablecoin_id)
    except StablecoinNotFoundError:
        raise _not_found(stablecoin_id)
    return _peg_price_response(snapshot)
