"""Price sources for the price refresher job."""

from bakerd.prices.client import CcxtPriceClient, PriceClient

__all__ = ["CcxtPriceClient", "PriceClient"]
