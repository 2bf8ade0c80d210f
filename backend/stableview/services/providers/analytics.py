"""On-chain analytics provider client (TopLedger query API).

Two saved queries are consumed:

- circulating supply: one row per mint per day with ``token_supply`` and ``holders``
- volume: one row per mint per day with ``volume`` and ``fee_payer``

Both datasets cover every tracked mint, so they are fetched once and cached
for a short time instead of once per stablecoin.
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .base import BaseProviderClient, PROVIDER_ERRORS, DEFAULT_TIMEOUT_SECONDS
from ..results import Found, NotFound, ProviderResult

logger = logging.getLogger(__name__)

SUPPLY_QUERY_ID = 14115
VOLUME_QUERY_ID = 14117
VOLUME_WINDOW_DAYS = 30

# Known Solana mints by slug.
MINT_BY_SLUG = {
    "usdc": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "usdt": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    "pyusd": "2b1kV6DkPAnxd5ixfnxCpjxmKwqjjaYmCZfHsFu24GXo",
    "fdusd": "9zNQRsGLjNKwCUU5Gq5LR8beUCPzQMVMqKAi3SSZh54u",
    "usdy": "A1KLoBrKBde8Ty9qtNQUtq3C2ortoC3u7twggz7sEto6",
    "usde": "DEkqHyPN7GMRJ5cArtQFAWefqbZb33Hyf6s5iCwjEonT",
    "usds": "USDSwr9ApdHk5bvJKMjzff41FfuX8bSxdKcR81vTwcA",
    "usdp": "HVbpJAQGNpkgBaYBZQBR1t7yFdvaYVp2vCQQfKKEN4tM",
    "usdg": "2u1tszSeqZ3qBWF3uNGPFc8TzMk2tdiwknnRMWGWjGWH",
    "usd*": "BenJy1n3WTx9mTjEvy63e8Q1j4RqUc6E4VBMz3ir4Wo6",
    "euroc": "HzwqbKZw8HxMN6bF2yFZNrht3c2iXXzpKcFu7uBEDKtr",
    "eurc": "HzwqbKZw8HxMN6bF2yFZNrht3c2iXXzpKcFu7uBEDKtr",
    "veur": "C4Kkr9NZU3VbyedcgutU6LKmi6MKz81sx6gRmk5pX519",
    "euroe": "2VhjJ9WxaGC3EZFwJG9BDUs9KxKCAjQY4vgd1qxgYWVg",
    "vgbp": "5H4voZhzySsVvwVYDAKku8MZGuYBC7cXaBKDPW4YHWW1",
    "vchf": "AhhdRu5YZdjVkKR3wbnUDaymVQL2ucjMQ63sZ3LFHsch",
    "brz": "FtgGSFADXBtroxq8VCausXRr2of47QBf5AS1NtZCu4GD",
    "tryb": "A94X2fRy3wydNShU4dRaDyap2UuoeWJGWyATtyp61WZf",
    "gyen": "Crn4x1Y2HUKko7ox2EZMT6N2t2ZyH7eKtwkBGVnhEq1g",
    "zusd": "FrBfWJ4qE5sCzKm3k3JaAtqZcXUh4LvJygDeketsrsH4",
    "mxne": "6zYgzrT7X2wi9a9NeMtUvUWLLmf2a8vBsbYkocYdB9wa",
    "ausd": "AUSD1jCcCyPLybk1YnvPWsHQSrZ46dxwoMniN4N2UEB9",
    "zarp": "dngKhBQM3BGvsDHKhrLnjvRKfY5Q7gEnYGToj9Lk8rk",
}


@dataclass
class AnalyticsMetrics:
    """Latest analytics metrics for one mint."""
    mint: str
    total_supply: float
    holders: float
    volume_30d: float
    transaction_count_30d: float
    daily_active_users: float
    as_of: Optional[datetime] = None


@dataclass
class DiscoveredStablecoin:
    """A stablecoin listed by the analytics provider."""
    slug: str
    name: str
    mint: str
    total_supply: float
    holders: float


def to_number(value: Any) -> float:
    """Coerce a series value to float; missing or non-numeric values count as zero."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def parse_block_date(value: Any) -> Optional[datetime]:
    """Parse a ``block_date`` cell into a naive UTC datetime."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta(0))
    return parsed


def slug_from_mint_name(mint_name: str) -> str:
    """Build a slug from a mint name ("USDC" -> "usdc", "USD*" -> "usd*")."""
    slug = re.sub(r"[^a-z0-9]", "", (mint_name or "").lower())
    return "usd*" if slug == "usd" else slug


class AnalyticsClient(BaseProviderClient):
    """Client for the on-chain analytics provider."""

    name = "Analytics API"

    def __init__(
        self,
        supply_api_key: str,
        volume_api_key: str,
        base_url: str = "https://analytics.topledger.xyz/solana/api",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        dataset_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(base_url, timeout_seconds)
        self.supply_api_key = supply_api_key
        self.volume_api_key = volume_api_key
        self.dataset_ttl_seconds = dataset_ttl_seconds
        self._clock = clock
        self._datasets: Dict[int, Tuple[float, List[Dict[str, Any]]]] = {}

    async def _fetch_query_rows(self, query_id: int, api_key: str) -> List[Dict[str, Any]]:
        cached = self._datasets.get(query_id)
        if cached is not None and self._clock() - cached[0] < self.dataset_ttl_seconds:
            return cached[1]

        url = f"{self.base_url}/queries/{query_id}/results.json"
        data = await self._get_json(url, params={"api_key": api_key})
        try:
            rows = data["query_result"]["data"]["rows"]
        except (KeyError, TypeError):
            raise ValueError(f"Unexpected response shape for query {query_id}")
        rows = [row for row in rows if isinstance(row, dict)]

        self._datasets[query_id] = (self._clock(), rows)
        return rows

    async def get_circulating_supply_data(self) -> List[Dict[str, Any]]:
        return await self._fetch_query_rows(SUPPLY_QUERY_ID, self.supply_api_key)

    async def get_volume_data(self) -> List[Dict[str, Any]]:
        return await self._fetch_query_rows(VOLUME_QUERY_ID, self.volume_api_key)

    def clear_cache(self) -> None:
        self._datasets.clear()

    async def get_latest_data_for_mint(
        self, mint: str, now: Optional[datetime] = None
    ) -> ProviderResult:
        """Get the latest supply/holders and trailing 30-day volume for a mint.

        Returns:
            ``Found(AnalyticsMetrics)``, ``NotFound`` when the provider has no
            supply rows for the mint, or ``Failed`` on provider errors.
        """
        try:
            supply_rows = await self.get_circulating_supply_data()
            volume_rows = await self.get_volume_data()
        except PROVIDER_ERRORS as e:
            return self._failure(f"Fetching analytics for mint {mint}", e)

        latest_supply = _latest_row(r for r in supply_rows if r.get("mint") == mint)
        if latest_supply is None:
            logger.warning(f"No supply data found for mint: {mint}")
            return NotFound(f"No supply data found for mint {mint}")

        now = now or datetime.utcnow()
        window_start = now - timedelta(days=VOLUME_WINDOW_DAYS)

        recent_volume = []
        for row in volume_rows:
            if row.get("mint") != mint:
                continue
            block_date = parse_block_date(row.get("block_date"))
            if block_date is not None and block_date >= window_start:
                recent_volume.append(row)
        holders = to_number(latest_supply.get("holders"))

        return Found(AnalyticsMetrics(
            mint=mint,
            total_supply=to_number(latest_supply.get("token_supply")),
            holders=holders,
            volume_30d=sum(to_number(r.get("volume")) for r in recent_volume),
            transaction_count_30d=sum(to_number(r.get("fee_payer")) for r in recent_volume),
            # Holder count stands in for daily active users
            daily_active_users=holders,
            as_of=parse_block_date(latest_supply.get("block_date")),
        ))

    async def list_available_stablecoins(self) -> ProviderResult:
        """List every mint in the supply dataset with its latest row.

        Returns:
            ``Found(List[DiscoveredStablecoin])`` or ``Failed``.
        """
        try:
            supply_rows = await self.get_circulating_supply_data()
        except PROVIDER_ERRORS as e:
            return self._failure("Listing available stablecoins", e)

        latest_by_mint: Dict[str, Dict[str, Any]] = {}
        for row in supply_rows:
            mint = row.get("mint")
            if not mint:
                continue
            existing = latest_by_mint.get(mint)
            if existing is None or _row_date(row) > _row_date(existing):
                latest_by_mint[mint] = row

        return Found([
            DiscoveredStablecoin(
                slug=slug_from_mint_name(row.get("mint_name") or ""),
                name=row.get("mint_name") or mint,
                mint=mint,
                total_supply=to_number(row.get("token_supply")),
                holders=to_number(row.get("holders")),
            )
            for mint, row in latest_by_mint.items()
        ])

    @staticmethod
    def get_mint_from_slug(slug: str) -> Optional[str]:
        return MINT_BY_SLUG.get(slug.lower())


def _row_date(row: Dict[str, Any]) -> datetime:
    return parse_block_date(row.get("block_date")) or datetime.min


def _latest_row(rows) -> Optional[Dict[str, Any]]:
    latest = None
    for row in rows:
        if latest is None or _row_date(row) > _row_date(latest):
            latest = row
    return latest
