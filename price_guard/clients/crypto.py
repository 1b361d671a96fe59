"""
Crypto price client for CoinGecko's simple/price endpoint.

No client-side throttle: the free tier's per-minute ceiling is generous
and multi-coin lookups are served by one request per batch.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pytz

from .base import PriceQuote, PriceResult, ProviderClient
from price_guard.core.cache import PriceCache
from price_guard.core.clock import Clock
from price_guard.core.exceptions import DataAbsentError, PriceGuardError, ProviderError
from price_guard.core.ledger import UsageLedger
from price_guard.storage.models import Provider

logger = logging.getLogger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3"
MAX_BATCH_SIZE = 100


def parse_simple_price(key: str, payload: Dict[str, Any], vs_currency: str, clock: Clock) -> PriceQuote:
    """Convert one coin's entry of a simple/price response into a PriceQuote.

    Raises:
        DataAbsentError: If the response has no entry for the coin
        ProviderError: If the entry is malformed
    """
    coin = payload.get(key)
    if not coin:
        raise DataAbsentError(key)

    try:
        updated_epoch = coin.get("last_updated_at")
        if updated_epoch is not None:
            last_updated = clock.localize(datetime.fromtimestamp(int(updated_epoch), tz=pytz.utc))
        else:
            last_updated = clock.now()
        change = coin.get(f"{vs_currency}_24h_change")
        return PriceQuote(
            key=key,
            price=float(coin[vs_currency]),
            last_updated=last_updated,
            change_percent=float(change) if change is not None else None,
        )
    except (KeyError, ValueError, TypeError, AttributeError, OverflowError) as e:
        raise ProviderError(f"Malformed price data for {key}: {e}") from e


def _group_key(keys: Sequence[str]) -> Optional[str]:
    # One record stands for the whole group; only a single-coin group names its key
    return keys[0] if len(keys) == 1 else None


class CryptoPriceClient(ProviderClient):
    """CoinGecko prices with short fixed-duration caching."""

    provider = Provider.COINGECKO
    endpoint = "coingecko_simple_price"
    canonical_key = "bitcoin"

    def __init__(
        self,
        ledger: UsageLedger,
        cache: PriceCache,
        base_url: str = COINGECKO_URL,
        vs_currency: str = "usd",
        batch_size: int = MAX_BATCH_SIZE,
        calls_per_quote: int = 1,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(ledger, cache, calls_per_quote, timeout, transport)
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.base_url = base_url.rstrip("/")
        self.vs_currency = vs_currency
        self.batch_size = batch_size

    def normalize_key(self, key: str) -> str:
        return key.strip().lower()

    async def _fetch_payload(self, keys: Sequence[str]) -> Dict[str, Any]:
        payload = await self._get_json(f"{self.base_url}/simple/price", {
            "ids": ",".join(keys),
            "vs_currencies": self.vs_currency,
            "include_24hr_change": "true",
            "include_last_updated_at": "true",
        })
        if not isinstance(payload, dict):
            raise ProviderError("Invalid response format from CoinGecko")
        return payload

    async def _fetch_one(self, key: str) -> PriceQuote:
        payload = await self._fetch_payload([key])
        return parse_simple_price(key, payload, self.vs_currency, self.clock)

    async def get_multiple_prices(self, keys: Sequence[str], use_cache: bool = True) -> List[PriceResult]:
        """Look up coins in batches, one network call per batch."""
        ordered = list(dict.fromkeys(self.normalize_key(k) for k in keys))
        results: List[PriceResult] = []

        for start in range(0, len(ordered), self.batch_size):
            batch = ordered[start:start + self.batch_size]
            batch_results: Dict[str, PriceResult] = {}
            try:
                await self._resolve_batch(batch, use_cache, batch_results)
            except PriceGuardError as e:
                logger.warning("Error fetching batch prices: %s", e.message)
                for key in batch:
                    if key not in batch_results:
                        batch_results[key] = self._failure(key, e)
            results.extend(batch_results[key] for key in batch)

        return results

    async def _resolve_batch(
        self,
        batch: Sequence[str],
        use_cache: bool,
        batch_results: Dict[str, PriceResult],
    ) -> None:
        pending = []
        for key in batch:
            entry = self.cache.get(key) if use_cache else None
            if entry is not None:
                batch_results[key] = PriceResult.from_quote(entry.data, from_cache=True)
            else:
                pending.append(key)

        cached_keys = list(batch_results)
        if cached_keys:
            self._record(_group_key(cached_keys), success=True, from_cache=True)

        if not pending:
            return

        logger.info("Fetching fresh prices for %d coins from CoinGecko", len(pending))
        try:
            payload = await self._fetch_payload(pending)
        except PriceGuardError:
            self._record(_group_key(pending), success=False, from_cache=False)
            raise
        self._record(_group_key(pending), success=True, from_cache=False)

        for key in pending:
            try:
                quote = parse_simple_price(key, payload, self.vs_currency, self.clock)
            except PriceGuardError as e:
                batch_results[key] = self._failure(key, e)
                continue
            self.cache.put(key, quote)
            batch_results[key] = PriceResult.from_quote(quote)
