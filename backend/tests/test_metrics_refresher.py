"""Tests for stablecoin sync and the metrics refresh run."""

from unittest.mock import AsyncMock, patch

import pytest

from stableview.services.errors import StablecoinNotFoundError
from stableview.services.metrics_refresher import MetricsRefresher
from stableview.services.providers.analytics import (
    AnalyticsClient,
    AnalyticsMetrics,
    DiscoveredStablecoin,
)
from stableview.services.results import Failed, Found, NotFound, RefreshStatus
from stableview.services.stablecoin_store import StablecoinStore

from conftest import FakeClock, FakeDateTimeClock, NOW, block_updates


def metrics_for(mint, supply=1000.0, holders=40.0, volume=5000.0, count_30d=360.0):
    return AnalyticsMetrics(
        mint=mint,
        total_supply=supply,
        holders=holders,
        volume_30d=volume,
        transaction_count_30d=count_30d,
        daily_active_users=holders,
    )


@pytest.fixture
def analytics():
    return AnalyticsClient("supply-key", "volume-key")


@pytest.fixture
def refresher(session_factory, analytics):
    return MetricsRefresher(
        session_factory,
        analytics,
        delay_seconds=1.0,
        sync_before_refresh=False,
        clock=FakeDateTimeClock(),
        sleep=FakeClock().sleep,
    )


class TestSync:
    """Tests for discovering new stablecoins."""

    DISCOVERED = [
        DiscoveredStablecoin("usdc", "USDC", "MintUSDC", 100.0, 10.0),
        DiscoveredStablecoin("pyusd", "PYUSD", "MintPYUSD", 50.0, 5.0),
        DiscoveredStablecoin("usd*", "USD*", "MintUSDStar", 1.0, 1.0),
    ]

    @pytest.mark.asyncio
    async def test_inserts_missing_with_zeroed_metrics(self, refresher, analytics, session_factory):
        with patch.object(analytics, "list_available_stablecoins", AsyncMock(return_value=Found(self.DISCOVERED))):
            summary = await refresher.sync_stablecoins()

        assert summary.created == ["usdc", "pyusd"]
        assert summary.skipped == ["usd*"]
        assert summary.error is None

        async with session_factory() as session:
            coin = await StablecoinStore(session).get_by_slug("usdc")
        assert coin.token_address == "MintUSDC"
        assert coin.name == "USDC"
        assert coin.total_supply == "0"
        assert coin.transaction_volume_30d == "0"

    @pytest.mark.asyncio
    async def test_running_twice_creates_nothing_the_second_time(self, refresher, analytics, session_factory):
        with patch.object(analytics, "list_available_stablecoins", AsyncMock(return_value=Found(self.DISCOVERED))):
            first = await refresher.sync_stablecoins()
            second = await refresher.sync_stablecoins()

        assert len(first.created) == 2
        assert second.created == []
        assert second.existing == ["usdc", "pyusd"]
        async with session_factory() as session:
            assert len(await StablecoinStore(session).list_all()) == 2

    @pytest.mark.asyncio
    async def test_existing_token_address_is_not_duplicated(
        self, refresher, analytics, make_stablecoin, session_factory
    ):
        await make_stablecoin(slug="usd-coin", token_address="MintUSDC")

        with patch.object(analytics, "list_available_stablecoins", AsyncMock(return_value=Found(self.DISCOVERED[:1]))):
            summary = await refresher.sync_stablecoins()

        assert summary.created == []
        assert summary.existing == ["usdc"]

    @pytest.mark.asyncio
    async def test_concurrent_insert_counts_as_existing(self, refresher, analytics, session_factory):
        # Simulate another run creating the row between the check and the insert
        original_insert = StablecoinStore.insert

        async def racing_insert(store, **fields):
            async with session_factory() as other:
                await original_insert(StablecoinStore(other), **fields)
            return await original_insert(store, **fields)

        with patch.object(analytics, "list_available_stablecoins", AsyncMock(return_value=Found(self.DISCOVERED[:1]))), \
                patch.object(StablecoinStore, "insert", racing_insert):
            summary = await refresher.sync_stablecoins()

        assert summary.created == []
        assert summary.existing == ["usdc"]
        assert summary.failed == {}

    @pytest.mark.asyncio
    async def test_provider_failure_is_reported(self, refresher, analytics):
        with patch.object(analytics, "list_available_stablecoins", AsyncMock(return_value=Failed("down"))):
            summary = await refresher.sync_stablecoins()

        assert summary.error == "down"
        assert summary.to_dict()["success"] is False

    @pytest.mark.asyncio
    async def test_custom_denylist(self, session_factory, analytics):
        refresher = MetricsRefresher(session_factory, analytics, denylist=["PYUSD"])
        with patch.object(analytics, "list_available_stablecoins", AsyncMock(return_value=Found(self.DISCOVERED))):
            summary = await refresher.sync_stablecoins()

        assert summary.created == ["usdc", "usd*"]
        assert summary.skipped == ["pyusd"]


class TestRefreshAll:
    """Tests for the metrics refresh run."""

    @pytest.mark.asyncio
    async def test_updates_metrics(self, refresher, analytics, make_stablecoin, load_stablecoin):
        coin_id = await make_stablecoin(token_address="MintA", name="Keep Me")

        with patch.object(analytics, "get_latest_data_for_mint", AsyncMock(return_value=Found(metrics_for("MintA")))):
            summary = await refresher.refresh_all()

        assert summary.total == 1
        assert summary.successful == 1
        assert summary.results[0].value == {
            "transaction_volume_30d": "5000",
            "transaction_count_daily": "360",
            "total_supply": "1000",
            "daily_active_users": "40",
        }

        coin = await load_stablecoin(coin_id)
        assert coin.total_supply == "1000"
        assert coin.transaction_volume_30d == "5000"
        assert coin.transaction_count_daily == "360"
        assert coin.updated_at == NOW
        assert coin.name == "Keep Me"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_the_run(self, refresher, analytics, make_stablecoin, load_stablecoin):
        bad = await make_stablecoin(token_address="MintBad")
        good = await make_stablecoin(token_address="MintGood")

        async def lookup(mint, now=None):
            if mint == "MintBad":
                raise RuntimeError("connection reset")
            return Found(metrics_for(mint))

        with patch.object(analytics, "get_latest_data_for_mint", side_effect=lookup):
            summary = await refresher.refresh_all()

        by_id = {r.stablecoin_id: r for r in summary.results}
        assert by_id[bad].status == RefreshStatus.FAILED
        assert "connection reset" in by_id[bad].error
        assert by_id[good].status == RefreshStatus.UPDATED
        assert (await load_stablecoin(good)).total_supply == "1000"

    @pytest.mark.asyncio
    async def test_failed_write_is_isolated(
        self, refresher, analytics, make_stablecoin, load_stablecoin, session_factory
    ):
        blocked = await make_stablecoin(token_address="MintA")
        other = await make_stablecoin(token_address="MintB")
        await block_updates(session_factory, blocked)

        with patch.object(analytics, "get_latest_data_for_mint", side_effect=lambda mint, now=None: Found(metrics_for(mint))):
            summary = await refresher.run()

        assert summary.error is None
        by_id = {r.stablecoin_id: r for r in summary.results}
        assert by_id[blocked].status == RefreshStatus.FAILED
        assert "row is locked" in by_id[blocked].error
        assert by_id[other].status == RefreshStatus.UPDATED
        assert (await load_stablecoin(blocked)).total_supply == "0"
        assert (await load_stablecoin(other)).total_supply == "1000"

    @pytest.mark.asyncio
    async def test_no_data_is_skipped_and_provider_error_failed(self, refresher, analytics, make_stablecoin):
        skipped = await make_stablecoin(token_address="MintNone")
        failed = await make_stablecoin(token_address="MintDown")

        async def lookup(mint, now=None):
            return NotFound("no rows") if mint == "MintNone" else Failed("HTTP 503")

        with patch.object(analytics, "get_latest_data_for_mint", side_effect=lookup):
            summary = await refresher.refresh_all()

        by_id = {r.stablecoin_id: r for r in summary.results}
        assert by_id[skipped].status == RefreshStatus.SKIPPED
        assert by_id[failed].status == RefreshStatus.FAILED
        assert summary.skipped == 1
        assert summary.failed == 1

    @pytest.mark.asyncio
    async def test_safety_violation_isolates_one_stablecoin(
        self, refresher, analytics, make_stablecoin, load_stablecoin
    ):
        first = await make_stablecoin(token_address="MintA", name="First")
        second = await make_stablecoin(token_address="MintB", name="Second")
        original_build = refresher.build_update

        def build_update(coin, metrics):
            values = original_build(coin, metrics)
            if coin.id == first:
                values["name"] = "Overwritten"
            return values

        with patch.object(analytics, "get_latest_data_for_mint", side_effect=lambda mint, now=None: Found(metrics_for(mint))), \
                patch.object(refresher, "build_update", side_effect=build_update):
            summary = await refresher.refresh_all()

        by_id = {r.stablecoin_id: r for r in summary.results}
        assert by_id[first].status == RefreshStatus.FAILED
        assert "Safety violation" in by_id[first].error
        assert by_id[second].status == RefreshStatus.UPDATED

        untouched = await load_stablecoin(first)
        assert untouched.name == "First"
        assert untouched.total_supply == "0"
        assert (await load_stablecoin(second)).total_supply == "1000"

    @pytest.mark.asyncio
    async def test_falls_back_to_known_mint_for_slug(self, refresher, analytics, make_stablecoin):
        await make_stablecoin(slug="usdc", token_address=None)
        mock = AsyncMock(return_value=Found(metrics_for("x")))

        with patch.object(analytics, "get_latest_data_for_mint", mock):
            summary = await refresher.refresh_all()

        assert summary.successful == 1
        mock.assert_awaited_once_with(AnalyticsClient.get_mint_from_slug("usdc"))

    @pytest.mark.asyncio
    async def test_missing_address_fails(self, refresher, analytics, make_stablecoin):
        await make_stablecoin(slug="unknown-coin", token_address=None)

        with patch.object(analytics, "get_latest_data_for_mint", AsyncMock()) as mock:
            summary = await refresher.refresh_all()

        assert summary.results[0].error == "No token address available"
        mock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delay_between_stablecoins(self, session_factory, analytics, make_stablecoin):
        clock = FakeClock()
        refresher = MetricsRefresher(
            session_factory, analytics, delay_seconds=1.0, sync_before_refresh=False, sleep=clock.sleep
        )
        for mint in ("MintA", "MintB", "MintC"):
            await make_stablecoin(token_address=mint)

        with patch.object(analytics, "get_latest_data_for_mint", side_effect=lambda mint, now=None: Found(metrics_for(mint))):
            await refresher.refresh_all()

        assert clock.sleeps == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_sync_runs_first_when_enabled(self, session_factory, analytics):
        refresher = MetricsRefresher(session_factory, analytics, delay_seconds=0)
        discovered = [DiscoveredStablecoin("usdc", "USDC", "MintUSDC", 100.0, 10.0)]

        with patch.object(analytics, "list_available_stablecoins", AsyncMock(return_value=Found(discovered))), \
                patch.object(analytics, "get_latest_data_for_mint", side_effect=lambda mint, now=None: Found(metrics_for(mint))):
            summary = await refresher.refresh_all()

        assert summary.details["sync"]["created"] == 1
        assert summary.successful == 1

    @pytest.mark.asyncio
    async def test_enumeration_failure_aborts_run(self, refresher):
        with patch.object(StablecoinStore, "list_all", AsyncMock(side_effect=RuntimeError("db down"))):
            summary = await refresher.run()

        assert summary.success is False
        assert summary.error == "db down"
        assert summary.total == 0

    @pytest.mark.asyncio
    async def test_refresh_one_unknown_id(self, refresher):
        with pytest.raises(StablecoinNotFoundError):
            await refresher.refresh_one(404)
