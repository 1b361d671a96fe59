"""
Shared price-lookup flow for provider clients.

Every lookup consults the provider's cache first, falls back to a live
fetch, and always leaves exactly one record in the usage ledger.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx

from price_guard.core.cache import PriceCache
from price_guard.core.exceptions import PriceGuardError, ProviderError, TransportError
from price_guard.core.ledger import UsageLedger
from price_guard.storage.models import Provider
from price_guard.storage.repository import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    """Processed quote, independent of the provider's wire format."""
    key: str
    price: float
    last_updated: datetime
    change: Optional[float] = None
    change_percent: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[int] = None
    previous_close: Optional[float] = None


def quote_to_dict(quote: PriceQuote) -> Dict[str, Any]:
    """Convert a quote to the form kept in the persisted cache."""
    data = asdict(quote)
    data["last_updated"] = quote.last_updated.isoformat()
    return data


def quote_from_dict(data: Dict[str, Any]) -> PriceQuote:
    """Rebuild a quote from its persisted form.

    Raises:
        KeyError: If a required field is missing
        ValueError: If the timestamp is invalid or has no UTC offset
        TypeError: If the dict has unknown fields
    """
    fields = dict(data)
    fields["last_updated"] = parse_timestamp(fields["last_updated"])
    return PriceQuote(**fields)


@dataclass(frozen=True)
class PriceResult:
    """Uniform outcome of a price lookup."""
    success: bool
    key: str
    from_cache: bool = False
    price: Optional[float] = None
    last_updated: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_quote(cls, quote: PriceQuote, from_cache: bool = False) -> "PriceResult":
        return cls(
            success=True,
            key=quote.key,
            from_cache=from_cache,
            price=quote.price,
            last_updated=quote.last_updated,
        )


@dataclass(frozen=True)
class ConnectionCheck:
    success: bool
    message: str


class ProviderClient:
    """Base class for a cached, usage-tracked price provider.

    Subclasses set provider, endpoint and canonical_key, and implement
    _fetch_one() to turn one key into a PriceQuote.
    """

    provider: Provider
    endpoint: str
    canonical_key: str

    def __init__(
        self,
        ledger: UsageLedger,
        cache: PriceCache,
        calls_per_quote: int = 1,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            ledger: Shared usage ledger
            cache: This provider's price cache
            calls_per_quote: Quota units consumed by one live call
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used to stub the provider)
        """
        self.ledger = ledger
        self.cache = cache
        self.clock = ledger.clock
        self.calls_per_quote = calls_per_quote
        self.timeout = timeout
        self._transport = transport

    def normalize_key(self, key: str) -> str:
        return key.strip()

    async def _fetch_one(self, key: str) -> PriceQuote:
        raise NotImplementedError

    async def _fetch_live(self, key: str) -> PriceQuote:
        return await self._fetch_one(key)

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        """GET a provider URL and decode its JSON body.

        Raises:
            TransportError: If the provider cannot be reached
            ProviderError: If the provider answers with an error status or bad JSON
        """
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"{self.provider.value} request failed: {e}") from e

        if resp.status_code == 429:
            raise ProviderError(
                "API call frequency limit reached. Please try again later.",
                is_rate_limited=True,
            )
        if resp.status_code != 200:
            raise ProviderError(f"{self.provider.value} API error: {resp.status_code} {resp.text[:200]}")

        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from {self.provider.value}: {e}") from e

    def _record(self, key: Optional[str], success: bool, from_cache: bool) -> None:
        self.ledger.record(
            provider=self.provider,
            endpoint=self.endpoint,
            key=key,
            success=success,
            from_cache=from_cache,
            cost=0 if from_cache else self.calls_per_quote,
        )

    def _failure(self, key: str, error: PriceGuardError) -> PriceResult:
        """Failure result, carrying the stale cached price when one exists."""
        stale = self.cache.get_stale(key)
        if stale is not None:
            logger.warning("Returning stale cached data for %s due to API error", key)
            return PriceResult(
                success=False,
                key=key,
                from_cache=True,
                price=stale.data.price,
                last_updated=stale.data.last_updated,
                error=f"API error: {error.message} (showing cached data)",
            )
        return PriceResult(success=False, key=key, error=error.message)

    async def get_price(self, key: str, use_cache: bool = True) -> PriceResult:
        """Current price of one key, from cache when allowed and valid."""
        key = self.normalize_key(key)

        if use_cache:
            entry = self.cache.get(key)
            if entry is not None:
                logger.debug("Using cached data for %s", key)
                self._record(key, success=True, from_cache=True)
                return PriceResult.from_quote(entry.data, from_cache=True)

        logger.info("Fetching fresh data for %s from %s", key, self.provider.value)
        try:
            quote = await self._fetch_live(key)
        except PriceGuardError as e:
            logger.warning("Error fetching price for %s: %s", key, e.message)
            self._record(key, success=False, from_cache=False)
            return self._failure(key, e)

        self.cache.put(key, quote)
        self._record(key, success=True, from_cache=False)
        return PriceResult.from_quote(quote)

    async def get_multiple_prices(self, keys: Sequence[str], use_cache: bool = True) -> List[PriceResult]:
        raise NotImplementedError

    def get_cached_prices_only(self, keys: Sequence[str]) -> List[PriceResult]:
        """Valid cached prices only; no network calls and no ledger records."""
        results = []
        for key in keys:
            entry = self.cache.get(self.normalize_key(key))
            if entry is not None:
                results.append(PriceResult.from_quote(entry.data, from_cache=True))
        return results

    async def test_connection(self) -> ConnectionCheck:
        """Live lookup of the canonical key, bypassing the cache."""
        result = await self.get_price(self.canonical_key, use_cache=False)
        if result.success:
            return ConnectionCheck(
                success=True,
                message=f"{self.provider.value} API working. {self.canonical_key} price: ${result.price:,.2f}",
            )
        return ConnectionCheck(
            success=False,
            message=result.error or f"Unknown error testing {self.provider.value} API",
        )

    def clear_cache(self, key: Optional[str] = None) -> None:
        """Remove one or all cache entries; the ledger is untouched."""
        self.cache.clear(self.normalize_key(key) if key is not None else None)
        if key is None:
            logger.info("All %s price cache cleared", self.provider.value)
        else:
            logger.info("Cache cleared for %s", key)

    def cache_status(self) -> List[Dict[str, Any]]:
        status = []
        for key in self.cache.keys():
            entry = self.cache.get_stale(key)
            status.append({
                "key": key,
                "cached_at": entry.cached_at,
                "expires_at": entry.expires_at,
                "is_valid": self.cache.is_valid(entry),
            })
        return status
