"""Output formatters: Rich tables, JSON, CSV."""

from __future__ import annotations

import csv
import io
import json

from rich.console import Console
from rich.table import Table

from deltascan.arbitrage.models import Opportunity
from deltascan.common.types import FAR_FUTURE, utcnow
from deltascan.markets.models import Market, Position


def _sorted(opportunities: list[Opportunity]) -> list[Opportunity]:
    return sorted(opportunities, key=lambda o: o.profit_margin_pct, reverse=True)


def _leg(p: Position) -> str:
    return f"{p.source_id}:{p.market_id} {p.side.value} @ {p.probability:.3f}"


def _position_dict(p: Position) -> dict[str, object]:
    return {
        "market_id": p.market_id,
        "source_id": p.source_id,
        "side": p.side.value,
        "probability": p.probability,
        "display_probability": p.display_probability,
        "available_liquidity": p.available_liquidity,
        "token_id": p.token_id,
        "observed_at": p.observed_at.isoformat(),
    }


def format_table(opportunities: list[Opportunity], console: Console | None = None) -> None:
    """Print opportunities as a Rich table, best margin first."""
    if console is None:
        console = Console()

    if not opportunities:
        console.print("[yellow]No arbitrage opportunities found.[/yellow]")
        return

    table = Table(
        title="Arbitrage Opportunities",
        caption=f"Generated at {utcnow().strftime('%Y-%m-%d %H:%M UTC')}",
        show_lines=True,
    )
    table.add_column("Margin", justify="right", width=8)
    table.add_column("Profit", justify="right", width=9)
    table.add_column("Capital", justify="right", width=9)
    table.add_column("Leg A", width=32, no_wrap=False)
    table.add_column("Stake A", justify="right", width=9)
    table.add_column("Leg B", width=32, no_wrap=False)
    table.add_column("Stake B", justify="right", width=9)
    table.add_column("Conf", justify="right", width=5)

    for o in _sorted(opportunities):
        table.add_row(
            f"[green]{o.profit_margin_pct:.2f}%[/green]",
            f"${o.estimated_profit:,.2f}",
            f"${o.required_capital:,.0f}",
            _leg(o.leg_a),
            f"${o.stake_a:,.2f}",
            _leg(o.leg_b),
            f"${o.stake_b:,.2f}",
            f"{o.confidence:.0%}",
        )

    console.print(table)
    console.print(f"\n[dim]{len(opportunities)} opportunity(ies) total[/dim]")


def format_json(opportunities: list[Opportunity]) -> str:
    return json.dumps(
        [
            {
                "id": o.id,
                "profit_margin_pct": o.profit_margin_pct,
                "required_capital": o.required_capital,
                "estimated_profit": o.estimated_profit,
                "stake_a": o.stake_a,
                "stake_b": o.stake_b,
                "confidence": o.confidence,
                "detected_at": o.detected_at.isoformat(),
                "leg_a": _position_dict(o.leg_a),
                "leg_b": _position_dict(o.leg_b),
            }
            for o in _sorted(opportunities)
        ],
        indent=2,
    )


def format_csv(opportunities: list[Opportunity]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "profit_margin_pct", "estimated_profit", "required_capital",
        "leg_a_source", "leg_a_market", "leg_a_side", "leg_a_probability", "stake_a",
        "leg_b_source", "leg_b_market", "leg_b_side", "leg_b_probability", "stake_b",
        "confidence", "detected_at",
    ])
    for o in _sorted(opportunities):
        writer.writerow([
            o.id, o.profit_margin_pct, o.estimated_profit, o.required_capital,
            o.leg_a.source_id, o.leg_a.market_id, o.leg_a.side.value, o.leg_a.probability, o.stake_a,
            o.leg_b.source_id, o.leg_b.market_id, o.leg_b.side.value, o.leg_b.probability, o.stake_b,
            o.confidence, o.detected_at.isoformat(),
        ])
    return output.getvalue()


def format_markets_table(
    markets: list[Market],
    positions: dict[str, list[Position]],
    console: Console | None = None,
) -> None:
    """Print markets with their YES/NO prices, soonest close first."""
    if console is None:
        console = Console()

    if not markets:
        console.print("[yellow]No markets found.[/yellow]")
        return

    table = Table(title="Tracked Markets", show_lines=True)
    table.add_column("Source", width=10)
    table.add_column("ID", width=10)
    table.add_column("Status", width=9)
    table.add_column("YES", justify="right", width=6)
    table.add_column("NO", justify="right", width=6)
    table.add_column("Volume", justify="right", width=12)
    table.add_column("Closes", width=10)
    table.add_column("Title", width=50, no_wrap=False)

    for m in sorted(markets, key=lambda m: m.close_time):
        prices = {p.side.value: p.probability for p in positions.get(m.id, [])}
        yes = prices.get("YES")
        no = prices.get("NO")
        table.add_row(
            m.source_id,
            m.id[:10],
            m.status.value,
            f"{yes:.2f}" if yes is not None else "-",
            f"{no:.2f}" if no is not None else "-",
            f"${m.volume:,.0f}" if m.volume is not None else "-",
            "-" if m.close_time == FAR_FUTURE else m.close_time.strftime("%Y-%m-%d"),
            m.title[:80],
        )

    console.print(table)
