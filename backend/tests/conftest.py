"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from stableview.main import app
from stableview.models import Base, Stablecoin, get_session
from stableview.routers.deps import get_services
from stableview.services.config import ConfigService
from stableview.services.container import ServiceContainer

CRON_SECRET = "test-cron-secret"
NOW = datetime(2024, 6, 1, 12, 0, 0)


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeDateTimeClock:
    """Wall clock for refreshers, returning naive UTC datetimes."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def no_sleep(seconds: float) -> None:
    return None


async def block_updates(session_factory, stablecoin_id: int) -> None:
    """Make every UPDATE of one stablecoin row fail inside SQLite."""
    async with session_factory() as session:
        await session.execute(text(
            f"CREATE TRIGGER block_updates_{stablecoin_id} BEFORE UPDATE ON stablecoins "
            f"WHEN OLD.id = {stablecoin_id} "
            "BEGIN SELECT RAISE(ABORT, 'row is locked'); END"
        ))
        await session.commit()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeDateTimeClock()


@pytest.fixture(scope="function")
async def session_factory(tmp_path):
    """Session factory on a fresh SQLite file database for each test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest.fixture(scope="function")
async def test_db(session_factory):
    """Session on the test database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_stablecoin(session_factory):
    """Insert a stablecoin and return its id."""
    counter = {"n": 0}

    async def _make(**fields) -> int:
        counter["n"] += 1
        n = counter["n"]
        values = {
            "slug": f"coin-{n}",
            "name": f"Coin {n}",
            "token": f"CN{n}",
            "token_address": f"Mint{n}111111111111111111111111111111",
            "pegged_asset": "USD",
        }
        values.update(fields)
        async with session_factory() as session:
            coin = Stablecoin(**values)
            session.add(coin)
            await session.commit()
            return coin.id

    return _make


@pytest.fixture
def load_stablecoin(session_factory):
    """Read a stablecoin through a fresh session."""

    async def _load(stablecoin_id: int) -> Stablecoin:
        async with session_factory() as session:
            return await session.get(Stablecoin, stablecoin_id)

    return _load


@pytest.fixture
def test_config(tmp_path):
    config = ConfigService(
        config_path=str(tmp_path / "missing.yaml"),
        environ={"CRON_SECRET": CRON_SECRET},
    )
    config.load_and_validate()
    return config


@pytest.fixture
def services(test_config, session_factory, wall_clock):
    """Service container wired to the test database with no real delays."""
    container = ServiceContainer(test_config, session_factory)
    container.metrics_refresher.delay_seconds = 0
    container.peg_price_refresher.delay_seconds = 0
    for refresher in (
        container.metrics_refresher,
        container.price_refresher,
        container.peg_price_refresher,
    ):
        refresher._clock = wall_clock
    container.rate_limiter.min_interval = 0
    container.price_client._batch.delay_seconds = 0
    return container


@pytest.fixture(scope="function")
async def client(session_factory, services):
    """Create test client with test database and services."""

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
