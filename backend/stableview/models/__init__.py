# Database Models

from .database import Base, configure_database, session_factory, get_session, init_db
from .stablecoin import Stablecoin, PRICE_NOT_AVAILABLE

__all__ = [
    "Base",
    "configure_database",
    "session_factory",
    "get_session",
    "init_db",
    "Stablecoin",
    "PRICE_NOT_AVAILABLE",
]
