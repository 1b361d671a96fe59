"""
Price provider clients.

Cached, rate-limited and usage-tracked lookups against the stock and
crypto price APIs.
"""

from .base import ConnectionCheck, PriceQuote, PriceResult, ProviderClient
from .crypto import CryptoPriceClient
from .stock import StockPriceClient

__all__ = [
    "ConnectionCheck",
    "CryptoPriceClient",
    "PriceQuote",
    "PriceResult",
    "ProviderClient",
    "StockPriceClient",
]
