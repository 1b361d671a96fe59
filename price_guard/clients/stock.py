"""
Stock price client for Alpha Vantage's GLOBAL_QUOTE endpoint.

Free tier allows 5 requests per minute, so every live call goes through a
process-wide rate limiter and batches are strictly sequential.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import httpx

from .base import PriceQuote, PriceResult, ProviderClient
from price_guard.core.cache import PriceCache
from price_guard.core.clock import Clock
from price_guard.core.exceptions import DataAbsentError, ProviderError
from price_guard.core.ledger import UsageLedger
from price_guard.core.rate_limiter import RateLimiter
from price_guard.storage.models import Provider

logger = logging.getLogger(__name__)

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"


def parse_global_quote(key: str, payload: Any, clock: Clock) -> PriceQuote:
    """Convert a GLOBAL_QUOTE response body into a PriceQuote.

    Args:
        key: Requested ticker symbol
        payload: Decoded JSON body
        clock: Used to place the latest trading day in the local zone

    Returns:
        Processed quote

    Raises:
        ProviderError: On error messages, rate-limit notices or malformed fields
        DataAbsentError: If the quote section is empty for this symbol
    """
    if not isinstance(payload, dict):
        raise ProviderError("Invalid response format from Alpha Vantage")
    if "Error Message" in payload:
        raise ProviderError(f"API Error: {payload['Error Message']}")
    if "Note" in payload:
        raise ProviderError(
            "API call frequency limit reached. Please try again later.",
            is_rate_limited=True,
        )
    if "Information" in payload:
        raise ProviderError(f"API notice: {payload['Information']}", is_rate_limited=True)

    quote = payload.get("Global Quote")
    if not isinstance(quote, dict):
        raise ProviderError("Invalid response format from Alpha Vantage")
    if not quote:
        raise DataAbsentError(key)

    try:
        trading_day = datetime.strptime(quote["07. latest trading day"], "%Y-%m-%d")
        return PriceQuote(
            key=key,
            price=float(quote["05. price"]),
            last_updated=clock.localize(trading_day),
            change=float(quote["09. change"]),
            change_percent=float(quote["10. change percent"].rstrip("%")),
            open=float(quote["02. open"]),
            high=float(quote["03. high"]),
            low=float(quote["04. low"]),
            volume=int(quote["06. volume"]),
            previous_close=float(quote["08. previous close"]),
        )
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise ProviderError(f"Malformed quote for {key}: {e}") from e


class StockPriceClient(ProviderClient):
    """Alpha Vantage quotes with day-scoped caching."""

    provider = Provider.ALPHAVANTAGE
    endpoint = "GLOBAL_QUOTE"
    canonical_key = "SPY"

    def __init__(
        self,
        ledger: UsageLedger,
        cache: PriceCache,
        rate_limiter: RateLimiter,
        api_key: Optional[str],
        base_url: str = ALPHA_VANTAGE_URL,
        calls_per_quote: int = 1,
        batch_pause: float = 1.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        super().__init__(ledger, cache, calls_per_quote, timeout, transport)
        self.rate_limiter = rate_limiter
        self.api_key = api_key or ""
        self.base_url = base_url
        self.batch_pause = batch_pause
        self._sleep = sleep or asyncio.sleep
        if not self.api_key:
            logger.warning("Alpha Vantage API key not found. Set ALPHA_VANTAGE_API_KEY or providers.alphavantage.api_key")

    def normalize_key(self, key: str) -> str:
        return key.strip().upper()

    async def _fetch_live(self, key: str) -> PriceQuote:
        async with self.rate_limiter.acquire():
            return await self._fetch_one(key)

    async def _fetch_one(self, key: str) -> PriceQuote:
        payload = await self._get_json(self.base_url, {
            "function": "GLOBAL_QUOTE",
            "symbol": key,
            "apikey": self.api_key,
        })
        return parse_global_quote(key, payload, self.clock)

    async def get_multiple_prices(self, keys: Sequence[str], use_cache: bool = True) -> List[PriceResult]:
        """Look up symbols one at a time, pausing between lookups."""
        logger.info("Fetching quotes for %d symbols...", len(keys))
        results = []
        for index, key in enumerate(keys):
            results.append(await self.get_price(key, use_cache))
            if index < len(keys) - 1:
                await self._sleep(self.batch_pause)
        return results
