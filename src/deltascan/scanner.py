"""Scan orchestrator.

Fans a fetch out to every configured source with asyncio.gather, merges
whatever came back into the shared market/position maps, then rebuilds the
opportunity list. A failing source only costs that source's data for the
cycle.

All mutation of the shared maps happens synchronously inside the cycle
task, after the fan-in, so readers on the same event loop never observe a
half-merged state. Readers get fresh lists, never the live containers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from deltascan.arbitrage.detector import (
    DEFAULT_CAPITAL,
    DEFAULT_CONFIDENCE,
    detect_opportunities,
    flatten_positions,
)
from deltascan.arbitrage.models import Opportunity
from deltascan.common.rate_limiter import RateLimiterStatus
from deltascan.common.types import utcnow
from deltascan.markets.models import Market, Position, TransformBatch

logger = logging.getLogger(__name__)


class MarketSource(Protocol):
    """An upstream platform the scanner can pull from."""

    source_id: str

    async def fetch_batch(self) -> TransformBatch: ...

    async def health_check(self) -> bool: ...

    def rate_limiter_status(self) -> RateLimiterStatus: ...


class ScanState(Enum):
    """Per-source scan lifecycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    FAILED = "failed"


@dataclass
class SourceScanResult:
    source_id: str
    succeeded: bool
    markets: int = 0
    dropped: int = 0
    error: str | None = None


@dataclass
class ScanSummary:
    """Outcome of one scan cycle."""

    started_at: datetime
    finished_at: datetime
    sources: list[SourceScanResult] = field(default_factory=list)
    total_markets: int = 0
    total_positions: int = 0
    opportunities: int = 0

    @property
    def failed_sources(self) -> list[str]:
        return [r.source_id for r in self.sources if not r.succeeded]


class MarketScanner:
    """Owns the market, position and opportunity state for all sources.

    Args:
        sources: Platforms to scan each cycle
        capital: Nominal stake used to size opportunities
        confidence: Confidence attached to every opportunity
    """

    def __init__(
        self,
        sources: Sequence[MarketSource],
        capital: float = DEFAULT_CAPITAL,
        confidence: float = DEFAULT_CONFIDENCE,
    ) -> None:
        ids = [s.source_id for s in sources]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate source ids: {ids}")

        self._sources = list(sources)
        self._capital = capital
        self._confidence = confidence

        self._markets: dict[str, Market] = {}
        self._positions: dict[str, list[Position]] = {}
        self._opportunities: list[Opportunity] = []
        self._states: dict[str, ScanState] = {s.source_id: ScanState.IDLE for s in sources}
        self._cycle_lock = asyncio.Lock()

        logger.info("MarketScanner initialized with sources: %s", ", ".join(ids) or "(none)")

    @property
    def is_scanning(self) -> bool:
        return self._cycle_lock.locked()

    async def _scan_source(self, source: MarketSource) -> TransformBatch:
        self._states[source.source_id] = ScanState.FETCHING
        logger.info("Scanning %s...", source.source_id)
        return await source.fetch_batch()

    def _merge(self, batch: TransformBatch) -> None:
        # Overwrite by id; markets missing from this batch are kept as-is
        for market in batch.markets:
            self._markets[market.id] = market
        for market_id, positions in batch.positions.items():
            self._positions[market_id] = list(positions)

    async def scan_all(self) -> ScanSummary | None:
        """Run one fetch-merge-detect cycle across every source.

        Returns None without scanning if a cycle is already in progress.
        """
        if self._cycle_lock.locked():
            logger.info("Scan already in progress, skipping this trigger")
            return None

        async with self._cycle_lock:
            started_at = utcnow()
            logger.info("Starting market scan across %d source(s)", len(self._sources))

            fetched = await asyncio.gather(
                *(self._scan_source(source) for source in self._sources),
                return_exceptions=True,
            )

            results: list[SourceScanResult] = []
            for source, outcome in zip(self._sources, fetched):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    self._states[source.source_id] = ScanState.FAILED
                    logger.error("Error scanning %s: %s", source.source_id, outcome)
                    results.append(
                        SourceScanResult(source.source_id, succeeded=False, error=str(outcome) or type(outcome).__name__)
                    )
                    continue

                self._states[source.source_id] = ScanState.MERGING
                self._merge(outcome)
                self._states[source.source_id] = ScanState.IDLE
                logger.info(
                    "%s scan completed: %d markets, %d dropped",
                    source.source_id, outcome.kept, outcome.dropped,
                )
                results.append(
                    SourceScanResult(
                        source.source_id, succeeded=True,
                        markets=outcome.kept, dropped=outcome.dropped,
                    )
                )

            self._detect()

            summary = ScanSummary(
                started_at=started_at,
                finished_at=utcnow(),
                sources=results,
                total_markets=len(self._markets),
                total_positions=sum(len(p) for p in self._positions.values()),
                opportunities=len(self._opportunities),
            )
            logger.info(
                "Market scan completed: %d markets, %d positions, %d opportunities, %d failed source(s)",
                summary.total_markets, summary.total_positions,
                summary.opportunities, len(summary.failed_sources),
            )
            return summary

    def _detect(self) -> None:
        self._opportunities = detect_opportunities(
            flatten_positions(self._positions),
            capital=self._capital,
            confidence=self._confidence,
        )

    async def run_periodic(
        self,
        interval_seconds: float,
        max_cycles: int | None = None,
        on_cycle: Callable[[ScanSummary | None], None] | None = None,
    ) -> None:
        """Scan on a fixed schedule, calling ``on_cycle`` after each scan.

        Ticks missed while a cycle overran are skipped, not queued.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")

        cycles = 0
        next_tick = time.monotonic()
        while max_cycles is None or cycles < max_cycles:
            summary = await self.scan_all()
            if on_cycle is not None:
                on_cycle(summary)
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            next_tick += interval_seconds
            now = time.monotonic()
            if now > next_tick:
                missed = int((now - next_tick) // interval_seconds) + 1
                logger.warning("Scan overran its interval, skipping %d trigger(s)", missed)
                next_tick += missed * interval_seconds
            await asyncio.sleep(next_tick - now)

    def get_markets(self) -> list[Market]:
        return list(self._markets.values())

    def get_positions_for_market(self, market_id: str) -> list[Position]:
        return list(self._positions.get(market_id, ()))

    def get_opportunities(self) -> list[Opportunity]:
        return list(self._opportunities)

    def source_states(self) -> dict[str, ScanState]:
        return dict(self._states)

    async def health_check(self) -> bool:
        """True when every source's upstream passes its health check."""
        checks = await asyncio.gather(
            *(source.health_check() for source in self._sources),
            return_exceptions=True,
        )
        healthy = True
        for source, ok in zip(self._sources, checks):
            if isinstance(ok, BaseException) or not ok:
                logger.warning("Source %s is unhealthy: %s", source.source_id, ok)
                healthy = False
        return healthy

    def rate_limiter_status(self) -> dict[str, RateLimiterStatus]:
        return {source.source_id: source.rate_limiter_status() for source in self._sources}
