# test_imports.py
import price_guard.cli.main
import price_guard.clients
from price_guard.core.advisor import UsageAdvisor
from price_guard.core.ledger import UsageLedger


def test_public_imports():
    assert price_guard.cli.main.app is not None
    assert price_guard.clients.StockPriceClient.provider.value == "alphavantage"
    assert price_guard.clients.CryptoPriceClient.provider.value == "coingecko"
    assert UsageAdvisor and UsageLedger
