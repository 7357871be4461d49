"""Arbitrage data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from deltascan.markets.models import Position


@dataclass(frozen=True)
class StakeAllocation:
    """Split of a total stake across two legs so either outcome pays the same."""

    stake_a: float
    stake_b: float


@dataclass
class Opportunity:
    """A cross-source pair of opposing positions priced below 1.0 combined.

    Attributes:
        id: Identifier unique within one detection pass
        leg_a: First position (earlier in scan order)
        leg_b: Opposing position from another source
        profit_margin_pct: (1 - total) / total * 100
        required_capital: Nominal stake the figures below are sized for
        estimated_profit: Profit on required_capital whichever side resolves
        stake_a: Portion of required_capital placed on leg_a
        stake_b: Portion of required_capital placed on leg_b
        confidence: Confidence score (0-1)
        detected_at: When the pass that found it ran
    """

    id: str
    leg_a: Position
    leg_b: Position
    profit_margin_pct: float
    required_capital: float
    estimated_profit: float
    stake_a: float
    stake_b: float
    confidence: float
    detected_at: datetime

    @property
    def total_probability(self) -> float:
        return self.leg_a.probability + self.leg_b.probability
