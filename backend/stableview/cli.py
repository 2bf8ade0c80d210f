"""Command line runner for the refresh jobs.

Usage:
    python -m stableview.cli metrics
    python -m stableview.cli prices --id 7
    python -m stableview.cli peg-prices
    python -m stableview.cli sync
    python -m stableview.cli list
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from .models import configure_database, init_db, session_factory
from .services.config import ConfigService, ConfigValidationException
from .services.container import ServiceContainer
from .services.errors import StablecoinNotFoundError
from .services.logging_service import configure_logging
from .services.stablecoin_store import StablecoinStore

logger = logging.getLogger(__name__)

COMMANDS = ["metrics", "prices", "peg-prices", "sync", "list"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="StableView refresh jobs")
    parser.add_argument("command", choices=COMMANDS, help="Job to run")
    parser.add_argument(
        "--id",
        type=int,
        dest="stablecoin_id",
        help="Refresh a single stablecoin instead of all (not for sync or list)",
    )
    parser.add_argument("--config", help="Path to config.yaml")
    return parser


async def run_command(services: ServiceContainer, command: str, stablecoin_id: Optional[int] = None) -> Any:
    """Run one job and return a JSON-serializable result."""
    if command == "sync":
        return (await services.metrics_refresher.sync_stablecoins()).to_dict()

    if command == "list":
        async with services.session_factory() as session:
            coins = await StablecoinStore(session).list_all()
        return [
            {
                "id": c.id,
                "slug": c.slug,
                "name": c.name,
                "token_address": c.token_address,
                "pegged_asset": c.pegged_asset,
                "price": c.price,
                "peg_price": c.peg_price,
            }
            for c in coins
        ]

    refresher = {
        "metrics": services.metrics_refresher,
        "prices": services.price_refresher,
        "peg-prices": services.peg_price_refresher,
    }[command]

    if stablecoin_id is not None:
        return (await refresher.refresh_one(stablecoin_id)).to_dict()
    return (await refresher.run()).to_dict()


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = ConfigService(args.config)
    try:
        config.load_and_validate()
    except ConfigValidationException as e:
        configure_logging()
        logger.critical(str(e))
        return 2

    configure_logging(config.get("logging.level", "INFO"), config.get("logging.format"))
    database_url = config.get("database.url")
    if database_url:
        configure_database(database_url)
    await init_db()

    services = ServiceContainer(config, session_factory)
    try:
        result = await run_command(services, args.command, args.stablecoin_id)
    except StablecoinNotFoundError as e:
        logger.error(str(e))
        return 1

    print(json.dumps(result, indent=2, default=str))
    if isinstance(result, dict) and result.get("success") is False:
        return 1
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
