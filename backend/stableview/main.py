"""StableView core FastAPI application.

Serves stablecoin data and runs the metrics, price and peg price refreshes,
either on demand or when triggered by an external scheduler.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .models import configure_database, init_db, session_factory
from .routers import cron, health, refresh, stablecoins
from .services.config import ConfigService, config_service, ConfigValidationException
from .services.container import ServiceContainer
from .services.logging_service import configure_logging

logger = logging.getLogger(__name__)

CORS_ORIGINS = ["http://localhost:3000", "http://localhost:3001"]
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3004


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: Validate configuration
    try:
        config_service.load_and_validate()
    except ConfigValidationException as e:
        configure_logging()
        logger.critical(f"Server cannot start with invalid configuration: {e}")
        sys.exit(1)

    configure_logging(config_service.get("logging.level", "INFO"), config_service.get("logging.format"))
    logger.info("Configuration validated successfully")

    database_url = config_service.get("database.url")
    if database_url:
        configure_database(database_url)

    await init_db()
    logger.info("Database initialized")

    app.state.services = ServiceContainer(config_service, session_factory)
    logger.info("Refresh services ready")

    yield

    logger.info("Shutdown complete")


app = FastAPI(
    title="StableView Core API",
    description="Stablecoin metrics, prices and peg prices",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(stablecoins.router, prefix="/api/stablecoins", tags=["Stablecoins"])
app.include_router(refresh.router, prefix="/api/refresh", tags=["Refresh"])
app.include_router(cron.router, prefix="/api/cron", tags=["Cron"])


@app.get("/")
async def root():
    """Root endpoint redirect to docs."""
    return {"message": "StableView Core API", "docs": "/docs"}


def serve(config: Optional[ConfigService] = None) -> None:
    """Run the API with uvicorn on the configured host and port."""
    config = config or config_service
    try:
        config.load_and_validate()
    except ConfigValidationException as e:
        configure_logging()
        logger.critical(f"Server cannot start with invalid configuration: {e}")
        sys.exit(1)

    uvicorn.run(
        app,
        host=config.get("server.host", DEFAULT_HOST),
        port=config.get("server.port", DEFAULT_PORT),
    )


if __name__ == "__main__":
    serve()
