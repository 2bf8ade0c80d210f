"""Database configuration and session management."""

import os

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

# Supabase/Postgres deployments use "postgresql+asyncpg://..."
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./stableview.db")

engine = create_async_engine(DATABASE_URL, echo=False)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


def configure_database(url: str) -> None:
    """Point the module-level engine and session factory at ``url``."""
    global DATABASE_URL, engine, async_session_maker
    if url == DATABASE_URL:
        return
    DATABASE_URL = url
    engine = create_async_engine(url, echo=False)
    async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def session_factory() -> AsyncSession:
    """Open a session on the currently configured engine."""
    return async_session_maker()


async def get_session() -> AsyncSession:
    """Dependency for getting database sessions."""
    async with async_session_maker() as session:
        yield session


async def init_db():
    """Initialize the database, creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
