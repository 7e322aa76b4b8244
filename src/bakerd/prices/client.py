"""Price source clients.

PriceClient is the contract the price refresher depends on. CcxtPriceClient
implements it over any ccxt exchange exposing public tickers (bitfinex by
default), so no API credentials are needed.
"""

import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation

import ccxt.async_support as ccxt_async

from bakerd.config import PriceSettings
from bakerd.exceptions import PriceSourceError
from bakerd.logging import get_logger
from bakerd.models import Pair, Price

logger = get_logger(__name__)


class PriceClient(ABC):
    """Abstract base class for price sources."""

    @abstractmethod
    async def fetch_prices(self, pairs: list[Pair]) -> list[Price]:
        """Return the latest price of each pair the source knows.

        Pairs the source does not list are left out of the result.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""
        ...


class CcxtPriceClient(PriceClient):
    """Price source backed by a ccxt async exchange."""

    def __init__(self, settings: PriceSettings) -> None:
        exchange_class = getattr(ccxt_async, settings.exchange, None)
        if exchange_class is None:
            raise ValueError(f"Unknown ccxt exchange: {settings.exchange}")
        self._exchange_id = settings.exchange
        self._exchange = exchange_class({"enableRateLimit": True})

    async def fetch_prices(self, pairs: list[Pair]) -> list[Price]:
        symbols = [pair.symbol for pair in pairs]
        try:
            tickers = await self._exchange.fetch_tickers(symbols)
        except ccxt_async.BaseError as e:
            raise PriceSourceError(f"{self._exchange_id}: {e}") from e

        now_ms = int(time.time() * 1000)
        prices: list[Price] = []
        for pair in pairs:
            ticker = tickers.get(pair.symbol)
            if ticker is None:
                logger.warning("price_pair_not_listed", exchange=self._exchange_id, pair=pair.symbol)
                continue
            try:
                prices.append(_ticker_to_price(pair, ticker, now_ms))
            except (InvalidOperation, TypeError) as e:
                raise PriceSourceError(
                    f"{self._exchange_id}: invalid ticker for {pair.symbol}"
                ) from e
        return prices

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("price_client_closed", exchange=self._exchange_id)


def _ticker_to_price(pair: Pair, ticker: dict, now_ms: int) -> Price:
    """Convert a ccxt unified ticker. ``percentage`` is in percent, stored as a ratio."""

    def dec(key: str) -> Decimal:
        value = ticker.get(key)
        return Decimal(str(value)) if value is not None else Decimal("0")

    return Price(
        pair=pair,
        bid=dec("bid"),
        ask=dec("ask"),
        daily_change_relative=dec("percentage") / 100,
        high=dec("high"),
        low=dec("low"),
        updated_at_ms=ticker.get("timestamp") or now_ms,
    )
