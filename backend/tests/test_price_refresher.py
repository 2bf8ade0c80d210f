"""Tests for the price refresh run and staleness-gated price reads."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from stableview.services.errors import ProviderHTTPError, StablecoinNotFoundError
from stableview.services.price_cache import PriceCache
from stableview.services.price_refresher import PriceRefresher
from stableview.services.providers.prices import PriceClient, PriceQuote
from stableview.services.rate_limiter import MinIntervalRateLimiter
from stableview.services.results import Failed, Found, NotFound, RefreshStatus

from conftest import FakeClock, FakeDateTimeClock, NOW, block_updates


def quote(price, change=0.02):
    return PriceQuote(price=price, price_change_24h=change, last_updated="", update_unix_time=0)


def birdeye_payload(value):
    return {"success": True, "data": {"value": value, "priceChange24h": -0.1, "updateUnixTime": 1}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def price_client(clock):
    limiter = MinIntervalRateLimiter(0.1, clock=clock, sleep=clock.sleep)
    return PriceClient("key", limiter, PriceCache(clock=clock), batch_delay_seconds=0)


@pytest.fixture
def wall():
    return FakeDateTimeClock()


@pytest.fixture
def refresher(session_factory, price_client, wall):
    return PriceRefresher(session_factory, price_client, stale_after=timedelta(hours=1), clock=wall)


class TestRefreshAll:
    """Tests for the full price run."""

    @pytest.mark.asyncio
    async def test_writes_prices(self, refresher, price_client, make_stablecoin, load_stablecoin):
        coin_id = await make_stablecoin(token_address="MintA")

        with patch.object(price_client, "_get_json", AsyncMock(return_value=birdeye_payload(0.9995))):
            summary = await refresher.refresh_all()

        assert summary.successful == 1
        coin = await load_stablecoin(coin_id)
        assert coin.price == "0.9995"
        assert coin.price_change_24h == -0.1
        assert coin.price_updated_at == NOW

    @pytest.mark.asyncio
    async def test_no_data_writes_sentinel(self, refresher, price_client, make_stablecoin, load_stablecoin):
        coin_id = await make_stablecoin(token_address="MintNoPrice")

        with patch.object(price_client, "_get_json", AsyncMock(return_value={"success": False})):
            summary = await refresher.refresh_all()

        coin = await load_stablecoin(coin_id)
        assert coin.price == "N/A"
        assert coin.price is not None
        assert summary.results[0].value == "N/A"
        assert summary.results[0].status == RefreshStatus.UPDATED

    @pytest.mark.asyncio
    async def test_provider_error_leaves_price_untouched(
        self, refresher, price_client, make_stablecoin, load_stablecoin
    ):
        coin_id = await make_stablecoin(token_address="MintA", price="1.0")

        with patch.object(price_client, "_get_json", AsyncMock(side_effect=ProviderHTTPError(502, "Bad Gateway"))):
            summary = await refresher.refresh_all()

        assert summary.failed == 1
        assert "502" in summary.results[0].error
        assert (await load_stablecoin(coin_id)).price == "1.0"

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, refresher, price_client, make_stablecoin, load_stablecoin):
        good = await make_stablecoin(token_address="MintGood")
        down = await make_stablecoin(token_address="MintDown")
        missing = await make_stablecoin(token_address=None)

        results = {"MintGood": Found(quote(1.0)), "MintDown": Failed("timed out")}
        with patch.object(price_client, "get_multiple_token_prices", AsyncMock(return_value=results)) as batch:
            summary = await refresher.refresh_all()

        batch.assert_awaited_once_with(["MintGood", "MintDown"])
        by_id = {r.stablecoin_id: r for r in summary.results}
        assert by_id[good].success
        assert by_id[down].error == "timed out"
        assert by_id[missing].error == "No token address available"
        assert (await load_stablecoin(good)).price == "1"

    @pytest.mark.asyncio
    async def test_failed_write_is_isolated(
        self, refresher, price_client, make_stablecoin, load_stablecoin, session_factory
    ):
        blocked = await make_stablecoin(token_address="MintA", price="1.0")
        other = await make_stablecoin(token_address="MintB")
        await block_updates(session_factory, blocked)

        with patch.object(price_client, "_get_json", AsyncMock(return_value=birdeye_payload(0.9991))):
            summary = await refresher.run()

        assert summary.error is None
        by_id = {r.stablecoin_id: r for r in summary.results}
        assert by_id[blocked].status == RefreshStatus.FAILED
        assert "row is locked" in by_id[blocked].error
        assert by_id[other].status == RefreshStatus.UPDATED
        assert (await load_stablecoin(blocked)).price == "1.0"
        assert (await load_stablecoin(other)).price == "0.9991"

    @pytest.mark.asyncio
    async def test_malformed_quote_does_not_abort_run(
        self, refresher, price_client, make_stablecoin, load_stablecoin
    ):
        odd = await make_stablecoin(token_address="MintA")
        other = await make_stablecoin(token_address="MintB")

        async def fake_get_json(url, params=None, headers=None):
            if params["address"] == "MintA":
                return {"success": True, "data": {"value": 1.0, "priceChange24h": "n/a"}}
            return birdeye_payload(0.998)

        with patch.object(price_client, "_get_json", side_effect=fake_get_json):
            summary = await refresher.run()

        assert summary.error is None
        assert summary.successful == 2
        odd_coin = await load_stablecoin(odd)
        assert odd_coin.price == "1"
        assert odd_coin.price_change_24h is None
        assert (await load_stablecoin(other)).price == "0.998"

    @pytest.mark.asyncio
    async def test_cached_quote_keeps_stored_change(
        self, refresher, price_client, make_stablecoin, load_stablecoin
    ):
        coin_id = await make_stablecoin(token_address="MintA", price="0.99", price_change_24h=0.5)
        price_client.cache.set("MintA", 1.0)

        with patch.object(price_client, "_get_json", AsyncMock()) as fetch:
            summary = await refresher.refresh_all()

        fetch.assert_not_awaited()
        assert summary.successful == 1
        coin = await load_stablecoin(coin_id)
        assert coin.price == "1"
        assert coin.price_change_24h == 0.5

    @pytest.mark.asyncio
    async def test_cached_price_skips_provider(self, refresher, price_client, make_stablecoin):
        await make_stablecoin(token_address="MintA")
        mock = AsyncMock(return_value=birdeye_payload(1.0))

        with patch.object(price_client, "_get_json", mock):
            await refresher.refresh_all()
            await refresher.refresh_all()

        assert mock.await_count == 1


class TestRefreshOne:
    """Tests for single-stablecoin refreshes."""

    @pytest.mark.asyncio
    async def test_refresh_one(self, refresher, price_client, make_stablecoin, load_stablecoin):
        coin_id = await make_stablecoin(token_address="MintA")

        with patch.object(price_client, "get_token_price", AsyncMock(return_value=Found(quote(1.001)))):
            result = await refresher.refresh_one(coin_id)

        assert result.success
        assert result.value == 1.001
        assert (await load_stablecoin(coin_id)).price == "1.001"

    @pytest.mark.asyncio
    async def test_refresh_one_without_address(self, refresher, make_stablecoin):
        coin_id = await make_stablecoin(token_address=None)

        result = await refresher.refresh_one(coin_id)

        assert result.status == RefreshStatus.FAILED
        assert result.error == "No token address available"

    @pytest.mark.asyncio
    async def test_refresh_one_unknown(self, refresher):
        with pytest.raises(StablecoinNotFoundError):
            await refresher.refresh_one(123)


class TestStalenessGate:
    """Tests for reads that refresh stale prices."""

    @pytest.mark.asyncio
    async def test_stale_price_triggers_one_refresh(self, refresher, price_client, make_stablecoin):
        coin_id = await make_stablecoin(
            token_address="MintA", price="0.99", price_updated_at=NOW - timedelta(hours=1, seconds=1)
        )
        mock = AsyncMock(return_value=Found(quote(1.0)))

        with patch.object(price_client, "get_token_price", mock):
            snapshot = await refresher.get_price(coin_id)

        mock.assert_awaited_once_with("MintA")
        assert snapshot["price"] == 1.0
        assert snapshot["refreshed"] is True
        assert snapshot["is_stale"] is False
        assert snapshot["last_updated"] == NOW

    @pytest.mark.asyncio
    async def test_fresh_price_is_served_without_refresh(self, refresher, price_client, make_stablecoin):
        coin_id = await make_stablecoin(
            token_address="MintA", price="0.99", price_updated_at=NOW - timedelta(minutes=59, seconds=59)
        )
        mock = AsyncMock()

        with patch.object(price_client, "get_token_price", mock):
            snapshot = await refresher.get_price(coin_id)

        mock.assert_not_awaited()
        assert snapshot["price"] == 0.99
        assert snapshot["refreshed"] is False

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_stale_value(self, refresher, price_client, make_stablecoin):
        stamp = NOW - timedelta(hours=3)
        coin_id = await make_stablecoin(token_address="MintA", price="0.98", price_updated_at=stamp)

        with patch.object(price_client, "get_token_price", AsyncMock(return_value=Failed("HTTP 500"))):
            snapshot = await refresher.get_price(coin_id)

        assert snapshot["price"] == 0.98
        assert snapshot["last_updated"] == stamp
        assert snapshot["is_stale"] is True
        assert snapshot["refreshed"] is False

    @pytest.mark.asyncio
    async def test_refresh_error_falls_back_to_stale_value(self, refresher, price_client, make_stablecoin):
        stamp = NOW - timedelta(hours=2)
        coin_id = await make_stablecoin(token_address="MintA", price="0.97", price_updated_at=stamp)

        with patch.object(price_client, "get_token_price", AsyncMock(side_effect=ValueError("bad payload"))):
            snapshot = await refresher.get_price(coin_id)

        assert snapshot["price"] == 0.97
        assert snapshot["last_updated"] == stamp
        assert snapshot["refreshed"] is False

    @pytest.mark.asyncio
    async def test_never_fetched_is_stale(self, refresher, price_client, make_stablecoin):
        coin_id = await make_stablecoin(token_address="MintA")

        with patch.object(price_client, "get_token_price", AsyncMock(return_value=NotFound())):
            snapshot = await refresher.get_price(coin_id)

        assert snapshot["price"] == "N/A"

    @pytest.mark.asyncio
    async def test_get_all_prices_refreshes_when_any_stale(self, refresher, price_client, make_stablecoin):
        await make_stablecoin(token_address="MintA", price="1.0", price_updated_at=NOW)
        await make_stablecoin(token_address="MintB", price="1.0", price_updated_at=NOW - timedelta(hours=2))
        results = {"MintA": Found(quote(1.01)), "MintB": Found(quote(1.02))}

        with patch.object(price_client, "get_multiple_token_prices", AsyncMock(return_value=results)) as batch:
            snapshots = await refresher.get_all_prices()

        batch.assert_awaited_once()
        assert [s["price"] for s in snapshots] == [1.01, 1.02]
        assert all(not s["is_stale"] for s in snapshots)

    @pytest.mark.asyncio
    async def test_get_all_prices_fresh(self, refresher, price_client, make_stablecoin):
        await make_stablecoin(token_address="MintA", price="1.0", price_updated_at=NOW)

        with patch.object(price_client, "get_multiple_token_prices", AsyncMock()) as batch:
            snapshots = await refresher.get_all_prices()

        batch.assert_not_awaited()
        assert snapshots[0]["price"] == 1.0

    @pytest.mark.asyncio
    async def test_unknown_id(self, refresher):
        with pytest.raises(StablecoinNotFoundError):
            await refresher.get_price(999)
