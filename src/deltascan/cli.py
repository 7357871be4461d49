"""Typer CLI: deltascan scan, list-markets, watch, status."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from deltascan.config import Settings, get_settings
from deltascan.scanner import MarketScanner

app = typer.Typer(
    name="deltascan",
    help="Prediction market scanner for cross-platform arbitrage",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR); defaults to settings",
    ),
) -> None:
    """Configure logging for every command."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@asynccontextmanager
async def _open_scanner(settings: Settings) -> AsyncIterator[MarketScanner]:
    """Build a scanner over every configured source and close them afterwards."""
    from deltascan.markets.service import PolymarketService

    sources = [PolymarketService(settings=settings)]
    try:
        yield MarketScanner(
            sources,
            capital=settings.nominal_capital,
            confidence=settings.default_confidence,
        )
    finally:
        for source in sources:
            await source.close()


def _settings_with(**overrides: object) -> Settings:
    settings = get_settings()
    update = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=update) if update else settings


def _print_output(scanner: MarketScanner, output: str) -> None:
    from deltascan.arbitrage.formatters import format_csv, format_json, format_table

    opportunities = scanner.get_opportunities()
    if output == "json":
        typer.echo(format_json(opportunities))
    elif output == "csv":
        typer.echo(format_csv(opportunities))
    else:
        format_table(opportunities, console)


@app.command()
def scan(
    output: str = typer.Option(
        "table", "--output", "-o",
        help="Output format: table, json, csv",
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit",
        help="Markets to request per source",
    ),
    capital: Optional[float] = typer.Option(
        None, "--capital",
        help="Nominal stake used to size opportunities",
    ),
) -> None:
    """Run one scan cycle and print the arbitrage opportunities found."""
    settings = _settings_with(scan_limit=limit, nominal_capital=capital)

    async def _run() -> None:
        async with _open_scanner(settings) as scanner:
            summary = await scanner.scan_all()
            if summary is not None and summary.failed_sources:
                console.print(
                    f"[yellow]Failed sources: {', '.join(summary.failed_sources)}[/yellow]"
                )
            _print_output(scanner, output)

    asyncio.run(_run())


@app.command(name="list-markets")
def list_markets(
    limit: Optional[int] = typer.Option(None, "--limit", help="Markets to request per source"),
) -> None:
    """List markets and YES/NO prices from every source (no detection output)."""
    from deltascan.arbitrage.formatters import format_markets_table

    settings = _settings_with(scan_limit=limit)

    async def _run() -> None:
        async with _open_scanner(settings) as scanner:
            await scanner.scan_all()
            markets = scanner.get_markets()
            positions = {m.id: scanner.get_positions_for_market(m.id) for m in markets}
            format_markets_table(markets, positions, console)

    asyncio.run(_run())


@app.command()
def watch(
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i",
        help="Minutes between scans (defaults to settings)",
    ),
    cycles: Optional[int] = typer.Option(
        None, "--cycles",
        help="Stop after this many cycles (default: run until interrupted)",
    ),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json, csv"),
) -> None:
    """Scan repeatedly on a fixed interval, printing opportunities each cycle."""
    settings = _settings_with(scan_interval_minutes=interval)

    async def _run() -> None:
        async with _open_scanner(settings) as scanner:
            await scanner.run_periodic(
                settings.scan_interval_minutes * 60,
                max_cycles=cycles,
                on_cycle=lambda _summary: _print_output(scanner, output),
            )

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@app.command()
def status() -> None:
    """Check upstream health and show rate limiter state."""
    settings = get_settings()

    async def _run() -> None:
        async with _open_scanner(settings) as scanner:
            healthy = await scanner.health_check()
            color = "green" if healthy else "red"
            console.print(f"Upstream health: [{color}]{'ok' if healthy else 'failing'}[/{color}]")

            table = Table(title="Rate Limiters")
            table.add_column("Source")
            table.add_column("Queued", justify="right")
            table.add_column("In window", justify="right")
            table.add_column("Draining")
            for source_id, st in scanner.rate_limiter_status().items():
                table.add_row(
                    source_id, str(st.queue_length), str(st.requests_in_window),
                    "yes" if st.draining else "no",
                )
            console.print(table)

    asyncio.run(_run())


if __name__ == "__main__":
    app()
