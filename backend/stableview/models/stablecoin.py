"""Stablecoin model: one tracked stablecoin and its cached metrics."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, Text

from .database import Base

# Written in place of a price when the provider confirms no price exists.
PRICE_NOT_AVAILABLE = "N/A"


class Stablecoin(Base):
    """Tracked stablecoin.

    Identity columns are set at creation. Metric columns are written only by
    the refresh services (see ``StablecoinStore``).
    """
    __tablename__ = "stablecoins"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    token = Column(String(50), nullable=False)
    pegged_asset = Column(String(50), nullable=True)
    issuer = Column(String(255), nullable=True)
    token_program = Column(String(50), nullable=True)
    token_address = Column(String(255), nullable=True, index=True)
    mint_authority = Column(String(255), nullable=True)

    # Links
    solscan_link = Column(Text, nullable=True)
    artemis_link = Column(Text, nullable=True)
    asset_reserves_link = Column(Text, nullable=True)

    # Analytics metrics (decimal strings)
    transaction_volume_30d = Column(String(64), default="0")
    transaction_count_daily = Column(String(64), default="0")
    total_supply = Column(String(64), default="0")
    daily_active_users = Column(String(64), default="0")

    # Spot price: decimal string, "N/A", or null when never fetched
    price = Column(String(64), nullable=True)
    price_change_24h = Column(Float, nullable=True)
    price_updated_at = Column(DateTime, nullable=True)

    # Peg price (USD value of one unit of the pegged asset)
    peg_price = Column(Float, nullable=True)
    peg_price_updated_at = Column(DateTime, nullable=True)

    executive_summary = Column(Text, nullable=True)
    logo_url = Column(Text, nullable=True)

    # Timestamps (updated_at tracks the last metrics refresh)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    @property
    def market_cap(self) -> float:
        """Price times total supply; zero when either is unknown."""
        try:
            return float(self.price or 0) * float(self.total_supply or 0)
        except ValueError:
            return 0.0

    def __repr__(self):
        return f"<Stablecoin(id={self.id}, slug='{self.slug}', token='{self.token}')>"
