"""Cross-source arbitrage detection.

Every unordered pair of known positions is compared, so a pass is O(n^2)
in the number of positions. With hundreds of tracked markets that is a few
hundred thousand cheap comparisons per scan.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime

from deltascan.arbitrage.calculations import (
    calculate_arbitrage,
    calculate_expected_profit,
    calculate_stake_allocation,
)
from deltascan.arbitrage.models import Opportunity
from deltascan.common.types import utcnow
from deltascan.markets.models import Position

logger = logging.getLogger(__name__)

DEFAULT_CAPITAL = 1000.0

# No scoring model exists yet; every opportunity gets this
DEFAULT_CONFIDENCE = 0.8


def flatten_positions(positions: Mapping[str, Sequence[Position]]) -> list[Position]:
    """Flatten a market_id -> positions map, preserving map order."""
    return [p for market_positions in positions.values() for p in market_positions]


def detect_opportunities(
    positions: Iterable[Position],
    capital: float = DEFAULT_CAPITAL,
    confidence: float = DEFAULT_CONFIDENCE,
    now: datetime | None = None,
) -> list[Opportunity]:
    """Find every cross-source pair of opposing positions summing below 1.0.

    Same-source pairs are never compared. Each call builds a fresh list.
    """
    detected_at = now or utcnow()
    stamp = int(detected_at.timestamp() * 1000)
    flat = list(positions)
    opportunities: list[Opportunity] = []

    for i, p1 in enumerate(flat):
        for j in range(i + 1, len(flat)):
            p2 = flat[j]
            if p1.source_id == p2.source_id:
                continue

            margin = calculate_arbitrage(p1, p2)
            if margin is None:
                continue

            stakes = calculate_stake_allocation(p1, p2, capital)
            opportunities.append(
                Opportunity(
                    id=f"arb_{stamp}_{i}_{j}",
                    leg_a=p1,
                    leg_b=p2,
                    profit_margin_pct=margin,
                    required_capital=capital,
                    estimated_profit=calculate_expected_profit(p1, p2, capital),
                    stake_a=stakes.stake_a,
                    stake_b=stakes.stake_b,
                    confidence=confidence,
                    detected_at=detected_at,
                )
            )

    logger.info(
        "Detected %d arbitrage opportunities across %d positions",
        len(opportunities), len(flat),
    )
    return opportunities
