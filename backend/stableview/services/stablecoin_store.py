"""Persistence for tracked stablecoins.

The refresh services only write through this store. Metrics updates are
checked against ``SAFE_METRIC_FIELDS`` before any statement is issued so that
identity columns can never be touched by an automated refresh.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Stablecoin
from .errors import SafetyViolationError

logger = logging.getLogger(__name__)

SAFE_METRIC_FIELDS = frozenset({
    "transaction_volume_30d",
    "transaction_count_daily",
    "total_supply",
    "daily_active_users",
    "updated_at",
})

ZEROED_METRICS = {
    "transaction_volume_30d": "0",
    "transaction_count_daily": "0",
    "total_supply": "0",
    "daily_active_users": "0",
}


def format_decimal(value: float) -> str:
    """Render a metric as a decimal string without float noise for integers."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


@dataclass
class MetricsUpdate:
    """The only fields a metrics refresh may write."""
    transaction_volume_30d: str
    transaction_count_daily: str
    total_supply: str
    daily_active_users: str
    updated_at: datetime

    def to_values(self) -> Dict[str, Any]:
        return {
            "transaction_volume_30d": self.transaction_volume_30d,
            "transaction_count_daily": self.transaction_count_daily,
            "total_supply": self.total_supply,
            "daily_active_users": self.daily_active_users,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class StablecoinRef:
    """Plain copy of the columns a refresh needs from one row.

    A failed write rolls the session back and expires every loaded row, so
    refresh loops read these copies instead of ORM attributes.
    """
    id: int
    slug: str
    name: str
    token_address: Optional[str]
    pegged_asset: Optional[str]

    @classmethod
    def from_row(cls, stablecoin: Stablecoin) -> "StablecoinRef":
        return cls(
            id=stablecoin.id,
            slug=stablecoin.slug,
            name=stablecoin.name,
            token_address=stablecoin.token_address,
            pegged_asset=stablecoin.pegged_asset,
        )


class StablecoinStore:
    """Read/write access to the stablecoins table for one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self) -> List[Stablecoin]:
        result = await self.session.execute(select(Stablecoin).order_by(Stablecoin.id))
        return list(result.scalars().all())

    async def list_with_pegged_asset(self) -> List[Stablecoin]:
        query = (
            select(Stablecoin)
            .where(Stablecoin.pegged_asset.is_not(None))
            .where(func.trim(Stablecoin.pegged_asset) != "")
            .order_by(Stablecoin.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get(self, stablecoin_id: int) -> Optional[Stablecoin]:
        query = (
            select(Stablecoin)
            .where(Stablecoin.id == stablecoin_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Optional[Stablecoin]:
        result = await self.session.execute(select(Stablecoin).where(Stablecoin.slug == slug))
        return result.scalar_one_or_none()

    async def get_by_token_address(self, token_address: str) -> Optional[Stablecoin]:
        result = await self.session.execute(
            select(Stablecoin).where(Stablecoin.token_address == token_address)
        )
        return result.scalars().first()

    async def insert(self, **fields: Any) -> Stablecoin:
        """Insert a new stablecoin and commit.

        Raises:
            sqlalchemy.exc.IntegrityError: If the slug already exists.
        """
        stablecoin = Stablecoin(**fields)
        self.session.add(stablecoin)
        await self._commit()
        await self.session.refresh(stablecoin)
        return stablecoin

    async def update_metrics(self, stablecoin_id: int, values: Mapping[str, Any]) -> None:
        """Write metric values for one stablecoin.

        Raises:
            SafetyViolationError: If ``values`` contains a field outside
                ``SAFE_METRIC_FIELDS``. Nothing is written in that case.
        """
        unsafe = set(values) - SAFE_METRIC_FIELDS
        if unsafe:
            logger.error(
                f"SAFETY VIOLATION: metrics update for stablecoin {stablecoin_id} "
                f"tried to write {sorted(unsafe)}; update aborted"
            )
            raise SafetyViolationError(unsafe)

        await self._update_where([stablecoin_id], dict(values))

    async def update_price(
        self,
        stablecoin_id: int,
        price: str,
        price_change_24h: Optional[float],
        updated_at: datetime,
        keep_price_change: bool = False,
    ) -> None:
        """Write a price. With ``keep_price_change`` the stored 24h change is left as is."""
        values: Dict[str, Any] = {"price": price, "price_updated_at": updated_at}
        if not keep_price_change:
            values["price_change_24h"] = price_change_24h
        await self._update_where([stablecoin_id], values)

    async def update_peg_price(
        self, stablecoin_ids: Iterable[int], peg_price: float, updated_at: datetime
    ) -> None:
        """Write the same peg price to every given stablecoin in one statement."""
        await self._update_where(list(stablecoin_ids), {
            "peg_price": peg_price,
            "peg_price_updated_at": updated_at,
        })

    async def _update_where(self, stablecoin_ids: List[int], values: Dict[str, Any]) -> None:
        if not stablecoin_ids:
            return
        statement = (
            update(Stablecoin)
            .where(Stablecoin.id.in_(stablecoin_ids))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            await self.session.execute(statement)
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        await self._commit()

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
