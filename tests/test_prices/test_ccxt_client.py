"""Tests for CcxtPriceClient.

All tests use a mocked ccxt exchange object to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import ccxt.async_support as ccxt_async
import pytest

from bakerd.config import PriceSettings
from bakerd.exceptions import PriceSourceError
from bakerd.models import Pair
from bakerd.prices.client import CcxtPriceClient

MOCK_TICKERS = {
    "CCD/USD": {
        "symbol": "CCD/USD",
        "timestamp": 1_700_000_000_000,
        "bid": 0.0071,
        "ask": 0.0072,
        "high": 0.008,
        "low": 0.007,
        "percentage": 3.1,
    },
    "BTC/USD": {
        "symbol": "BTC/USD",
        "timestamp": None,
        "bid": 64000.0,
        "ask": 64010.0,
        "high": 65000.0,
        "low": 63000.0,
        "percentage": None,
    },
}


@pytest.fixture
def client() -> CcxtPriceClient:
    c = CcxtPriceClient(PriceSettings())
    c._exchange = AsyncMock()
    c._exchange.fetch_tickers = AsyncMock(return_value=MOCK_TICKERS)
    return c


class TestCcxtPriceClient:
    @pytest.mark.asyncio
    async def test_converts_tickers_to_decimal_prices(self, client) -> None:
        prices = await client.fetch_prices([Pair("CCD", "USD"), Pair("BTC", "USD")])

        client._exchange.fetch_tickers.assert_awaited_once_with(["CCD/USD", "BTC/USD"])
        ccd, btc = prices
        assert ccd.bid == Decimal("0.0071")
        assert ccd.daily_change_relative == Decimal("0.031")
        assert ccd.updated_at_ms == 1_700_000_000_000
        assert btc.daily_change_relative == Decimal("0")
        assert btc.updated_at_ms > 0

    @pytest.mark.asyncio
    async def test_unlisted_pair_is_skipped(self, client) -> None:
        prices = await client.fetch_prices([Pair("CCD", "USD"), Pair("ETH", "EUR")])

        assert [p.pair for p in prices] == [Pair("CCD", "USD")]

    @pytest.mark.asyncio
    async def test_ccxt_errors_are_wrapped(self, client) -> None:
        client._exchange.fetch_tickers.side_effect = ccxt_async.NetworkError("bitfinex GET failed")

        with pytest.raises(PriceSourceError, match="bitfinex"):
            await client.fetch_prices([Pair("CCD", "USD")])

    def test_unknown_exchange_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown ccxt exchange"):
            CcxtPriceClient(PriceSettings(exchange="not-an-exchange"))
