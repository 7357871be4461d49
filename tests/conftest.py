"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from deltascan.markets.models import Position, Side


class FakeClock:
    """Manual clock whose async sleep advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def make_position(now):
    """Factory for Positions with sensible defaults."""

    def _make(
        source_id: str = "polymarket",
        market_id: str = "m1",
        side: Side = Side.YES,
        probability: float = 0.5,
    ) -> Position:
        return Position(
            market_id=market_id,
            source_id=source_id,
            side=side,
            probability=probability,
            display_probability=probability * 100,
            observed_at=now,
        )

    return _make


# --- Mock API response fixtures ---


@pytest.fixture
def gamma_market():
    """A tradable Gamma market with stringified prices and token ids."""
    return {
        "id": "516710",
        "conditionId": "0xabc",
        "question": "Will the Fed cut rates in December?",
        "description": "Resolves YES if the FOMC lowers the target range.",
        "outcomes": '["Yes","No"]',
        "outcomePrices": '["0.62","0.38"]',
        "clobTokenIds": '["111","222"]',
        "active": True,
        "closed": False,
        "archived": False,
        "acceptingOrders": True,
        "volume": "250000.5",
        "volume24hr": 12000,
        "liquidity": "25000",
        "slug": "fed-cut-december",
        "endDate": "2025-12-10T00:00:00Z",
        "events": [{"slug": "fed-decisions"}],
    }


@pytest.fixture
def gamma_markets_response(gamma_market):
    """Mixed listing: good, illiquid, closed, unpriced, skewed."""
    return [
        gamma_market,
        {
            "id": "m-illiquid",
            "question": "Illiquid market?",
            "outcomePrices": '["0.50","0.50"]',
            "active": True,
            "closed": False,
            "acceptingOrders": True,
            "liquidity": "50",
            "slug": "illiquid",
        },
        {
            "id": "m-closed",
            "question": "Closed market?",
            "outcomePrices": '["0.50","0.50"]',
            "active": True,
            "closed": True,
            "acceptingOrders": False,
            "liquidity": "5000",
        },
        {
            "id": "m-unpriced",
            "question": "No prices?",
            "active": True,
            "closed": False,
            "acceptingOrders": True,
            "liquidity": "5000",
        },
        {
            "id": "m-skewed",
            "question": "Stale feed?",
            "outcomePrices": '["0.90","0.60"]',
            "active": True,
            "closed": False,
            "acceptingOrders": True,
            "liquidity": "5000",
        },
    ]


@pytest.fixture
def gamma_events_response(gamma_market):
    """Two events; the second has two markets with different 24h volume."""
    return [
        {"id": "e1", "title": "Fed", "markets": [gamma_market]},
        {
            "id": "e2",
            "title": "Elections",
            "markets": [
                {
                    "id": "m-low",
                    "question": "Low volume?",
                    "outcomePrices": '["0.30","0.70"]',
                    "active": True,
                    "closed": False,
                    "acceptingOrders": True,
                    "liquidity": "2000",
                    "volume24hr": 600,
                },
                {
                    "id": "m-high",
                    "question": "High volume?",
                    "tokens": [
                        {"token_id": "t-yes", "outcome": "Yes", "price": 0.45},
                        {"token_id": "t-no", "outcome": "No", "price": 0.55},
                    ],
                    "active": True,
                    "closed": False,
                    "accepting_orders": True,
                    "liquidity": 8000,
                    "volume_24hr": 90000,
                },
            ],
        },
        {"id": "e3", "title": "Empty event"},
    ]
