# API Routers

from . import health, stablecoins, refresh, cron

__all__ = ["health", "stablecoins", "refresh", "cron"]
