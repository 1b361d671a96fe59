"""
Service wiring.

Builds the ledger, caches, limiter, clients and advisor once per process
and hands the same instances to every consumer.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import httpx

from price_guard.clients.base import quote_from_dict, quote_to_dict
from price_guard.clients.crypto import CryptoPriceClient
from price_guard.clients.stock import StockPriceClient
from price_guard.config.loader import AppConfig
from price_guard.core.advisor import UsageAdvisor
from price_guard.core.cache import EndOfDayTTL, FixedTTL, PriceCache
from price_guard.core.clock import Clock
from price_guard.core.ledger import UsageLedger
from price_guard.core.rate_limiter import RateLimiter
from price_guard.storage.models import Provider
from price_guard.storage.repository import PRICE_CACHE_KEYS, PriceCacheStore, UsageStore


@dataclass
class Services:
    """Injectable services shared by the interface layer."""
    clock: Clock
    ledger: UsageLedger
    stock: StockPriceClient
    crypto: CryptoPriceClient
    advisor: UsageAdvisor

    def client_for(self, provider: Provider):
        return self.stock if provider == Provider.ALPHAVANTAGE else self.crypto


def build_services(
    config: AppConfig,
    clock: Optional[Clock] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Services:
    """Construct and initialize every service from configuration.

    Args:
        config: Validated application configuration
        clock: Optional time source (defaults to the configured zone)
        transport: Optional httpx transport shared by both clients
        sleep: Optional coroutine used for rate-limit and batch waits

    Returns:
        Services with the ledger and price caches already loaded
    """
    clock = clock or Clock(config.timezone)

    ledger = UsageLedger(
        store=UsageStore(config.storage.db_path),
        clock=clock,
        retention_days=config.storage.retention_days,
    )
    ledger.initialize()

    stock_cfg = config.alphavantage
    stock_cache = _load_cache(config, clock, Provider.ALPHAVANTAGE, EndOfDayTTL(clock))
    stock = StockPriceClient(
        ledger=ledger,
        cache=stock_cache,
        rate_limiter=RateLimiter(stock_cfg.min_request_interval, clock=clock.monotonic, sleep=sleep),
        api_key=stock_cfg.resolved_api_key(),
        base_url=stock_cfg.base_url,
        calls_per_quote=stock_cfg.calls_per_quote,
        batch_pause=stock_cfg.batch_pause,
        timeout=stock_cfg.timeout,
        transport=transport,
        sleep=sleep,
    )

    crypto_cfg = config.coingecko
    crypto_cache = _load_cache(
        config, clock, Provider.COINGECKO, FixedTTL(timedelta(minutes=crypto_cfg.cache_minutes))
    )
    crypto = CryptoPriceClient(
        ledger=ledger,
        cache=crypto_cache,
        base_url=crypto_cfg.base_url,
        vs_currency=crypto_cfg.vs_currency,
        batch_size=crypto_cfg.batch_size,
        calls_per_quote=crypto_cfg.calls_per_quote,
        timeout=crypto_cfg.timeout,
        transport=transport,
    )

    advisor = UsageAdvisor(
        ledger=ledger,
        daily_limit=stock_cfg.daily_limit,
        minute_limit=stock_cfg.minute_limit,
        calls_per_quote=stock_cfg.calls_per_quote,
        stock_symbols=config.portfolio.stocks,
        next_update_at=config.next_update,
    )

    return Services(clock=clock, ledger=ledger, stock=stock, crypto=crypto, advisor=advisor)


def _load_cache(config: AppConfig, clock: Clock, provider: Provider, ttl_policy) -> PriceCache:
    """Build a provider's cache on the ledger's database and load its entries."""
    store = PriceCacheStore(
        key=PRICE_CACHE_KEYS[provider],
        encode=quote_to_dict,
        decode=quote_from_dict,
        db_path=config.storage.db_path,
    )
    cache = PriceCache(clock, ttl_policy, store=store)
    cache.load()
    return cache
