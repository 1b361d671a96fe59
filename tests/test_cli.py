"""
Tests for the CLI interface.
"""
from unittest.mock import patch

import httpx
import pytest
import yaml
from typer.testing import CliRunner

from price_guard.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from price_guard.services import build_services
from conftest import StubProvider, global_quote, simple_price

runner = CliRunner()


def _provider_handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "www.alphavantage.co":
        symbol = request.url.params["symbol"]
        if symbol == "XYZ":
            return httpx.Response(200, json={"Error Message": "Invalid API call."})
        return httpx.Response(200, json=global_quote(symbol))
    ids = request.url.params["ids"].split(",")
    return httpx.Response(200, json=simple_price({i: 67000.5 for i in ids}))


@pytest.fixture
def stub_provider():
    return StubProvider(_provider_handler)


@pytest.fixture
def config_path(tmp_path):
    """Write a config whose ledger lives in the test directory."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "storage": {"db_path": str(tmp_path / "usage.db")},
        "providers": {"alphavantage": {"api_key": "demo"}},
        "portfolio": {"stocks": ["SPY", "VTI"], "crypto": ["bitcoin"]},
    }))
    return str(path)


@pytest.fixture(autouse=True)
def stub_services(clock, stub_provider):
    """Build real services against the stubbed providers and fake clock."""
    def _build(config):
        return build_services(config, clock=clock, transport=stub_provider.transport, sleep=clock.sleep)

    with patch('price_guard.cli.main.build_services', side_effect=_build), \
            patch('price_guard.cli.main.setup_logging'):
        yield


def _invoke(config_path, *args):
    return runner.invoke(app, ["--config", config_path, *args])


class TestCLI:
    """Test CLI commands."""

    def test_no_command_shows_hint(self, config_path):
        result = _invoke(config_path)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_bad_config_path(self):
        """A missing config file exits with failure."""
        result = runner.invoke(app, ["--config", "/nonexistent/config.yaml", "status"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output

    def test_status_command(self, config_path):
        result = _invoke(config_path, "status")

        assert result.exit_code == EXIT_CODE_PASS
        assert "API Usage Today" in result.output
        assert "500" in result.output

    def test_quote_command(self, config_path, stub_provider):
        result = _invoke(config_path, "quote", "spy")

        assert result.exit_code == EXIT_CODE_PASS
        assert "$450.25" in result.output
        assert stub_provider.call_count == 1

    def test_quote_failure_exits_with_failure(self, config_path):
        result = _invoke(config_path, "quote", "XYZ")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_crypto_quote(self, config_path, stub_provider):
        result = _invoke(config_path, "quote", "--crypto", "bitcoin")

        assert result.exit_code == EXIT_CODE_PASS
        assert "$67,000.50" in result.output
        assert stub_provider.requests[0].url.host == "api.coingecko.com"

    def test_usage_survives_between_invocations(self, config_path):
        """Calls recorded by one command show up in the next."""
        _invoke(config_path, "quote", "SPY")
        result = _invoke(config_path, "live")

        assert result.exit_code == EXIT_CODE_PASS
        assert "SPY" in result.output
        assert "alphavantage" in result.output

    def test_live_without_fetches(self, config_path):
        result = _invoke(config_path, "live")
        assert "No live data fetched today" in result.output

    def test_history_command(self, config_path):
        result = _invoke(config_path, "history")

        assert result.exit_code == EXIT_CODE_PASS
        assert "API Usage History" in result.output
        assert "03/15" in result.output

    def test_estimate_affordable(self, config_path):
        result = _invoke(config_path, "estimate", "all")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Refresh all stocks (2 calls)" in result.output

    def test_estimate_unknown_operation(self, config_path):
        result = _invoke(config_path, "estimate", "everything")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown operation" in result.output

    def test_refresh_portfolio(self, config_path, stub_provider):
        result = _invoke(config_path, "refresh")

        assert result.exit_code == EXIT_CODE_PASS
        hosts = [r.url.host for r in stub_provider.requests]
        assert hosts == ["www.alphavantage.co", "www.alphavantage.co", "api.coingecko.com"]

    def test_cached_with_empty_cache(self, config_path, stub_provider):
        result = _invoke(config_path, "cached", "SPY")

        assert result.exit_code == EXIT_CODE_PASS
        assert "No valid cached prices" in result.output
        assert stub_provider.call_count == 0

    def test_test_connection(self, config_path):
        result = _invoke(config_path, "test-connection")

        assert result.exit_code == EXIT_CODE_PASS
        assert "alphavantage API working" in result.output

    def test_test_connection_crypto(self, config_path):
        result = _invoke(config_path, "test-connection", "--crypto")

        assert result.exit_code == EXIT_CODE_PASS
        assert "coingecko API working" in result.output

    def test_cache_survives_between_invocations(self, config_path, stub_provider):
        """A quote cached by one command is served by the next at no cost."""
        _invoke(config_path, "quote", "SPY")

        cached = _invoke(config_path, "cached", "SPY")
        assert cached.exit_code == EXIT_CODE_PASS
        assert "$450.25" in cached.output
        assert "No valid cached prices" not in cached.output

        again = _invoke(config_path, "quote", "SPY")
        assert again.exit_code == EXIT_CODE_PASS
        assert "cached" in again.output
        assert stub_provider.call_count == 1

    def test_crypto_cache_survives_between_invocations(self, config_path, stub_provider):
        _invoke(config_path, "quote", "--crypto", "bitcoin")
        result = _invoke(config_path, "cached", "--crypto", "bitcoin")

        assert "$67,000.50" in result.output
        assert stub_provider.call_count == 1

    def test_clear_cache(self, config_path, stub_provider):
        _invoke(config_path, "quote", "SPY", "VTI")
        result = _invoke(config_path, "clear-cache")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Cache cleared for all keys" in result.output

        cached = _invoke(config_path, "cached", "SPY", "VTI")
        assert "No valid cached prices" in cached.output

    def test_clear_cache_single_key(self, config_path, stub_provider):
        _invoke(config_path, "quote", "SPY", "VTI")
        result = _invoke(config_path, "clear-cache", "spy")

        assert "Cache cleared for spy" in result.output
        _invoke(config_path, "quote", "SPY", "VTI")
        assert stub_provider.call_count == 3

    def test_reset_today(self, config_path):
        _invoke(config_path, "quote", "SPY")
        result = _invoke(config_path, "reset-today")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Removed 1 usage records" in result.output
