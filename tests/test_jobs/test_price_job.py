"""Tests for PriceRefresher."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from bakerd.exceptions import PriceSourceError
from bakerd.jobs.price import PriceRefresher
from bakerd.models import Pair, Price

CCD_USD = Pair("CCD", "USD")
BTC_USD = Pair("BTC", "USD")


@pytest.fixture
def price_client() -> AsyncMock:
    client = AsyncMock()
    client.fetch_prices = AsyncMock(
        return_value=[
            Price(CCD_USD, Decimal("0.0071"), Decimal("0.0072"), Decimal("0.031"), Decimal("0.008"), Decimal("0.007"), 1000),
            Price(BTC_USD, Decimal("64000"), Decimal("64010"), Decimal("-0.01"), Decimal("65000"), Decimal("63000"), 1000),
        ]
    )
    return client


class TestPriceRefresher:
    @pytest.mark.asyncio
    async def test_upserts_fetched_prices(self, price_client, store) -> None:
        refresher = PriceRefresher(price_client, store, [CCD_USD, BTC_USD])

        await refresher.execute()
        await refresher.execute()

        price_client.fetch_prices.assert_awaited_with([CCD_USD, BTC_USD])
        assert await store.count_rows("prices") == 2
        ccd = await store.get_price("CCD", "USD")
        assert ccd.bid == Decimal("0.0071")
        assert ccd.daily_change_relative == Decimal("0.031")

    @pytest.mark.asyncio
    async def test_source_failure_writes_nothing(self, price_client, store) -> None:
        price_client.fetch_prices.side_effect = PriceSourceError("bitfinex: rate limited")
        refresher = PriceRefresher(price_client, store, [CCD_USD])

        with pytest.raises(PriceSourceError):
            await refresher.execute()

        assert await store.count_rows("prices") == 0

    @pytest.mark.asyncio
    async def test_no_pairs_is_a_noop(self, price_client, store) -> None:
        await PriceRefresher(price_client, store, []).execute()

        price_client.fetch_prices.assert_not_awaited()
