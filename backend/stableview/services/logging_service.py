"""Logging setup and refresh run reporting."""

import logging
from typing import Optional

from .results import RefreshStatus, RunSummary

logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """Configure root logging for the service and the CLI."""
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format=fmt or DEFAULT_LOG_FORMAT,
    )


def log_run_summary(summary: RunSummary) -> None:
    """Log the tally of a refresh run and every failed entity."""
    if summary.error:
        logger.error(f"{summary.name} run aborted: {summary.error}")
        return

    logger.info(
        f"{summary.name} run completed: total={summary.total} "
        f"successful={summary.successful} skipped={summary.skipped} failed={summary.failed}"
    )
    for result in summary.results:
        if result.status == RefreshStatus.FAILED:
            logger.warning(f"  - Stablecoin {result.stablecoin_id}: {result.error}")
