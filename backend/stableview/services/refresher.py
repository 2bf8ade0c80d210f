"""Shared plumbing for the refresh orchestrators."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .logging_service import log_run_summary
from .results import RunSummary

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def is_stale(last_updated: Optional[datetime], threshold: timedelta, now: datetime) -> bool:
    """A value is stale when it was never written or is older than ``threshold``."""
    if last_updated is None:
        return True
    return now - last_updated > threshold


class BaseRefresher:
    """Base class for orchestrators that refresh stablecoin rows.

    Full runs of one orchestrator are serialized with a lock so a manual
    trigger and a scheduled run in the same process do not interleave.
    """

    name = "refresh"

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def refresh_all(self) -> RunSummary:
        raise NotImplementedError

    async def run(self) -> RunSummary:
        """Run ``refresh_all`` and report a run-level failure instead of raising."""
        try:
            summary = await self.refresh_all()
        except Exception as e:
            logger.exception(f"Error in {self.name} run: {e}")
            summary = RunSummary(self.name, error=str(e))
        log_run_summary(summary)
        return summary
