"""
Shared fixtures for price-guard tests.

Provides a controllable clock, a temporary usage store and stub price
providers backed by httpx.MockTransport.
"""

from datetime import datetime, timedelta
from typing import Callable, List

import httpx
import pytest
import pytz

from price_guard.core.clock import Clock
from price_guard.core.ledger import UsageLedger
from price_guard.storage.repository import UsageStore

EASTERN = pytz.timezone("US/Eastern")


class FakeClock(Clock):
    """Clock whose current instant only moves when told to."""

    def __init__(self, start: datetime, timezone: str = "US/Eastern"):
        super().__init__(timezone)
        self.current = start
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        return self.current.astimezone(self._tz)

    def monotonic(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self.current = self.current + timedelta(seconds=seconds, **kwargs)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class StubProvider:
    """Records incoming requests and answers them with a handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def call_count(self) -> int:
        return len(self.requests)


def global_quote(symbol: str, price: str = "450.25") -> dict:
    """Alpha Vantage GLOBAL_QUOTE body for a symbol."""
    return {
        "Global Quote": {
            "01. symbol": symbol,
            "02. open": "448.00",
            "03. high": "451.00",
            "04. low": "447.50",
            "05. price": price,
            "06. volume": "1000000",
            "07. latest trading day": "2024-03-15",
            "08. previous close": "449.00",
            "09. change": "1.25",
            "10. change percent": "0.2784%",
        }
    }


def simple_price(prices: dict) -> dict:
    """CoinGecko simple/price body for coin id -> usd price."""
    return {
        coin_id: {
            "usd": price,
            "usd_24h_change": 2.5,
            "last_updated_at": 1710511200,
        }
        for coin_id, price in prices.items()
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(EASTERN.localize(datetime(2024, 3, 15, 10, 0, 0)))


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "usage.db")


@pytest.fixture
def ledger(db_path, clock) -> UsageLedger:
    usage_ledger = UsageLedger(UsageStore(db_path), clock)
    usage_ledger.initialize()
    return usage_ledger
