"""Price refresher job -- keeps the latest price of each followed pair."""

from bakerd.logging import get_logger
from bakerd.models import Pair
from bakerd.prices.client import PriceClient
from bakerd.storage.store import Store

logger = get_logger(__name__)


class PriceRefresher:
    """Fetches the configured pairs from the price source and upserts them.

    Args:
        client: Price source.
        store: Local store.
        pairs: Pairs to follow.
    """

    name = "price_refresher"

    def __init__(self, client: PriceClient, store: Store, pairs: list[Pair]) -> None:
        self._client = client
        self._store = store
        self._pairs = pairs

    async def execute(self) -> None:
        if not self._pairs:
            return

        prices = await self._client.fetch_prices(self._pairs)
        async with self._store.transaction():
            for price in prices:
                await self._store.upsert_price(price)

        logger.info("prices_refreshed", requested=len(self._pairs), updated=len(prices))
