"""
CLI interface for Price Guard.

Provides command-line access to price lookups and API usage statistics.
"""

import asyncio
import sys
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from price_guard.clients.base import PriceResult
from price_guard.config.loader import AppConfig, load_config
from price_guard.config.logging_config import setup_logging
from price_guard.core.advisor import OperationKind, RateLimitLevel
from price_guard.services import Services, build_services

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

LEVEL_STYLES = {
    RateLimitLevel.SAFE: "green",
    RateLimitLevel.WARNING: "yellow",
    RateLimitLevel.CRITICAL: "red",
}


def get_services(ctx: typer.Context) -> Services:
    """Build services once per invocation from the loaded config."""
    state = ctx.ensure_object(dict)
    if "services" not in state:
        state["services"] = build_services(state.get("config") or AppConfig())
    return state["services"]


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
):
    """Price Guard CLI."""
    try:
        app_config = load_config(config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    setup_logging(app_config.log_level)
    ctx.ensure_object(dict)["config"] = app_config

    if ctx.invoked_subcommand is None:
        console.print("Price Guard - Use --help to see available commands")


@app.command()
def status(ctx: typer.Context):
    """Show today's API usage and rate-limit status."""
    advisor = get_services(ctx).advisor
    stats = advisor.todays_stats()
    limits = advisor.rate_limit_status()

    table = Table(title="API Usage Today")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Calls used", str(stats.total_calls_today))
    table.add_row("Remaining", str(stats.remaining_calls_today))
    table.add_row("Daily limit", str(stats.daily_limit))
    table.add_row("Resets at", stats.reset_time.strftime("%Y-%m-%d %H:%M"))
    table.add_row("Daily usage", _level(limits.daily.status, f"{limits.daily.percentage:.1f}%"))
    table.add_row("Last minute", _level(limits.minute.status, str(limits.minute.calls_in_last_minute)))
    console.print(table)

    analysis = stats.cost_analysis
    console.print(
        f"Costs: test={analysis.test_connection} single={analysis.single_refresh} "
        f"all={analysis.all_refresh}"
    )
    if analysis.next_scheduled_update:
        console.print(f"Next update: {analysis.next_scheduled_update.strftime('%Y-%m-%d %H:%M')}")


@app.command()
def history(ctx: typer.Context):
    """Show API calls consumed over the last 7 days."""
    table = Table(title="API Usage History")
    table.add_column("Date")
    table.add_column("Calls", justify="right")
    for point in get_services(ctx).advisor.usage_history():
        table.add_row(point.label, str(point.calls))
    console.print(table)


@app.command()
def live(ctx: typer.Context):
    """Show which keys were fetched live today."""
    indicators = get_services(ctx).advisor.live_data_indicators()
    if not indicators:
        console.print("[dim]No live data fetched today.[/]")
        return

    table = Table(title="Live Data")
    table.add_column("Key")
    table.add_column("Provider")
    table.add_column("Last update")
    for key, indicator in sorted(indicators.items()):
        table.add_row(key, indicator.provider.value, indicator.last_update.strftime("%H:%M:%S"))
    console.print(table)


@app.command()
def estimate(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Operation: test, single or all"),
):
    """Estimate the quota cost of an operation."""
    if kind not in [k.value for k in OperationKind]:
        console.print(f"[red]Unknown operation:[/] {kind}")
        sys.exit(EXIT_CODE_FAIL)

    result = get_services(ctx).advisor.estimate_operation_cost(kind)
    verdict = "[green]affordable[/]" if result.affordable else "[red]not affordable[/]"
    console.print(f"{result.description}: {verdict}")
    sys.exit(EXIT_CODE_PASS if result.affordable else EXIT_CODE_FAIL)


@app.command()
def quote(
    ctx: typer.Context,
    keys: List[str] = typer.Argument(..., help="Stock symbols or coin ids"),
    crypto: bool = typer.Option(False, "--crypto", help="Look up coin ids on CoinGecko"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the price cache"),
):
    """Fetch current prices."""
    services = get_services(ctx)
    client = services.crypto if crypto else services.stock
    results = asyncio.run(client.get_multiple_prices(keys, use_cache=not no_cache))
    _display_results(results)
    sys.exit(EXIT_CODE_PASS if all(r.success for r in results) else EXIT_CODE_FAIL)


@app.command()
def refresh(
    ctx: typer.Context,
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the price cache"),
    force: bool = typer.Option(False, "--force", "-f", help="Refresh even if the quota looks insufficient"),
):
    """Refresh every stock and coin in the configured portfolio."""
    services = get_services(ctx)
    portfolio = ctx.obj["config"].portfolio

    cost = services.advisor.estimate_operation_cost(OperationKind.ALL)
    if not cost.affordable and not force:
        console.print(f"[red]Not enough quota left:[/] {cost.description}")
        sys.exit(EXIT_CODE_FAIL)

    async def _refresh_all() -> List[PriceResult]:
        stocks = await services.stock.get_multiple_prices(portfolio.stocks, use_cache=not no_cache)
        coins = await services.crypto.get_multiple_prices(portfolio.crypto, use_cache=not no_cache)
        return stocks + coins

    results = asyncio.run(_refresh_all())
    _display_results(results)
    sys.exit(EXIT_CODE_PASS if all(r.success for r in results) else EXIT_CODE_FAIL)


@app.command()
def cached(
    ctx: typer.Context,
    keys: List[str] = typer.Argument(..., help="Stock symbols or coin ids"),
    crypto: bool = typer.Option(False, "--crypto", help="Look up coin ids"),
):
    """Show cached prices only, without calling any API."""
    services = get_services(ctx)
    client = services.crypto if crypto else services.stock
    results = client.get_cached_prices_only(keys)
    if not results:
        console.print("[dim]No valid cached prices.[/]")
        return
    _display_results(results)


@app.command("test-connection")
def test_connection(
    ctx: typer.Context,
    crypto: bool = typer.Option(False, "--crypto", help="Test CoinGecko instead of Alpha Vantage"),
):
    """Check connectivity with a single live lookup."""
    services = get_services(ctx)
    client = services.crypto if crypto else services.stock
    result = asyncio.run(client.test_connection())
    if result.success:
        console.print(f"[green]✓[/] {result.message}")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗[/] {result.message}")
    sys.exit(EXIT_CODE_FAIL)


@app.command("clear-cache")
def clear_cache(
    ctx: typer.Context,
    key: Optional[str] = typer.Argument(None, help="Key to clear; all when omitted"),
    crypto: bool = typer.Option(False, "--crypto", help="Clear the CoinGecko cache"),
):
    """Clear cached prices for one key or a whole provider."""
    services = get_services(ctx)
    client = services.crypto if crypto else services.stock
    client.clear_cache(key)
    console.print(f"[green]✓[/] Cache cleared for {key or 'all keys'}")


@app.command("reset-today")
def reset_today(ctx: typer.Context):
    """Remove today's records from the usage ledger."""
    removed = get_services(ctx).ledger.reset_todays_usage()
    console.print(f"[green]✓[/] Removed {removed} usage records from today")


def _level(level: RateLimitLevel, text: str) -> str:
    style = LEVEL_STYLES[level]
    return f"[{style}]{text} ({level.value})[/]"


def _format_price(price: Optional[float]) -> str:
    return f"${price:,.2f}" if price is not None else "N/A"


def _display_results(results: List[PriceResult]):
    """Display lookup results as a table."""
    table = Table(title="Prices")
    table.add_column("Key")
    table.add_column("Price", justify="right")
    table.add_column("Source")
    table.add_column("Status")
    for result in results:
        source = "cached" if result.from_cache else "live"
        state = "[green]ok[/]" if result.success else f"[red]{result.error}[/]"
        table.add_row(result.key, _format_price(result.price), source, state)
    console.print(table)


if __name__ == "__main__":
    app()
