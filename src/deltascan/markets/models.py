"""Market data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TypeAlias


class MarketStatus(Enum):
    """Trading status of a market."""

    ACTIVE = "active"
    CLOSED = "closed"
    SUSPENDED = "suspended"
    RESOLVED = "resolved"


class Side(Enum):
    """Side of a binary market."""

    YES = "YES"
    NO = "NO"


@dataclass
class Market:
    """A tradable question on one source.

    Replaced wholesale on every re-fetch; ``close_time`` is always set
    (FAR_FUTURE when the source gives none).
    """

    id: str
    source_id: str
    title: str
    close_time: datetime
    status: MarketStatus
    url: str
    volume: float | None = None
    liquidity: float | None = None
    description: str = ""
    category: str | None = None  # first event slug, when present


@dataclass
class Position:
    """One side of a binary market with its implied probability.

    Attributes:
        market_id: Owning market
        source_id: Platform the quote came from
        side: YES or NO
        probability: Price as a probability (0-1)
        display_probability: Same price as a percentage (0-100)
        available_liquidity: Rough depth for this side, if known
        observed_at: When the quote was transformed
        token_id: CLOB token for this side, if known
    """

    market_id: str
    source_id: str
    side: Side
    probability: float
    display_probability: float
    observed_at: datetime
    available_liquidity: float | None = None
    token_id: str | None = None


@dataclass(frozen=True)
class PricesFound:
    """Both sides of a market were priced."""

    yes: float
    no: float
    yes_token_id: str | None = None
    no_token_id: str | None = None

    @property
    def total(self) -> float:
        return self.yes + self.no


@dataclass(frozen=True)
class PricesNotFound:
    """No price encoding in the record yielded two numbers."""

    reason: str


PriceExtraction: TypeAlias = PricesFound | PricesNotFound


@dataclass
class TransformBatch:
    """Result of transforming a batch of raw records from one source."""

    source_id: str
    markets: list[Market] = field(default_factory=list)
    positions: dict[str, list[Position]] = field(default_factory=dict)
    dropped: int = 0

    @property
    def kept(self) -> int:
        return len(self.markets)
