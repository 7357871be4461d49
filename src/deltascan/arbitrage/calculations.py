"""Arbitrage math for a pair of opposing positions.

For two positions priced p1 and p2 on opposite sides, a combined cost
total = p1 + p2 below 1.0 locks in a payout of 1.0 per unit whichever side
resolves true:

    margin = (1 - total) / total
    stake_i = capital * p_i / total

The capital helpers require an actual arbitrage and raise otherwise.
"""

from __future__ import annotations

from deltascan.arbitrage.models import StakeAllocation
from deltascan.markets.models import Position


class NoArbitrageError(ValueError):
    """Capital math requested for a pair whose prices don't sum into (0, 1)."""


def _total(p1: Position, p2: Position) -> float:
    return p1.probability + p2.probability


def _require_arbitrage(p1: Position, p2: Position) -> float:
    total = _total(p1, p2)
    if not 0.0 < total < 1.0:
        raise NoArbitrageError(
            f"No arbitrage: {p1.probability:.4f} + {p2.probability:.4f} = {total:.4f} outside (0, 1)"
        )
    return total


def calculate_arbitrage(p1: Position, p2: Position) -> float | None:
    """Profit margin in percent, or None if the pair isn't an arbitrage.

    Positions on the same side never hedge each other. A pair priced at zero
    combined has no defined margin.
    """
    if p1.side == p2.side:
        return None

    total = _total(p1, p2)
    if 0.0 < total < 1.0:
        return (1.0 - total) / total * 100.0
    return None


def calculate_required_capital(p1: Position, p2: Position, target_profit: float = 100.0) -> float:
    """Capital needed to make ``target_profit``."""
    total = _require_arbitrage(p1, p2)
    return target_profit / ((1.0 - total) / total)


def calculate_stake_allocation(p1: Position, p2: Position, total_capital: float) -> StakeAllocation:
    """Split ``total_capital`` so the payout is identical on either outcome."""
    total = _require_arbitrage(p1, p2)
    return StakeAllocation(
        stake_a=total_capital * p1.probability / total,
        stake_b=total_capital * p2.probability / total,
    )


def calculate_expected_profit(p1: Position, p2: Position, total_capital: float) -> float:
    total = _require_arbitrage(p1, p2)
    return total_capital * (1.0 - total) / total


def decimal_to_percentage(decimal: float) -> float:
    return decimal * 100.0


def percentage_to_decimal(percentage: float) -> float:
    return percentage / 100.0
