"""Polymarket integration: throttled, cached fetches turned into Markets.

Every upstream call is queued through the service's RateLimiter, and every
listing query goes through the TTL cache keyed by query and limit.
"""

from __future__ import annotations

import asyncio
import logging

from deltascan.common.cache import TTLCache
from deltascan.common.rate_limiter import RateLimiter, RateLimiterStatus
from deltascan.common.types import JsonDict, to_float
from deltascan.config import Settings, get_settings
from deltascan.markets.client import PolymarketClient
from deltascan.markets.models import Market, Position, TransformBatch
from deltascan.markets.transformer import (
    filter_valid_markets,
    is_market_valid,
    transform_markets,
    transform_record,
)

logger = logging.getLogger(__name__)

SOURCE_ID = "polymarket"

# Upper bound the Gamma API accepts per page
MAX_PAGE_SIZE = 100


def _markets_from_events(events: list[JsonDict]) -> list[JsonDict]:
    markets: list[JsonDict] = []
    for event in events:
        event_markets = event.get("markets")
        if isinstance(event_markets, list):
            markets.extend(event_markets)
    return markets


def _volume_24hr(raw: JsonDict) -> float | None:
    return to_float(raw.get("volume24hr", raw.get("volume_24hr")))


def _sort_volume(raw: JsonDict) -> float:
    return _volume_24hr(raw) or to_float(raw.get("volume")) or 0.0


class PolymarketService:
    """Source of Markets and Positions for Polymarket."""

    source_id = SOURCE_ID

    def __init__(
        self,
        client: PolymarketClient | None = None,
        rate_limiter: RateLimiter | None = None,
        cache: TTLCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        s = self._settings
        self._client = client or PolymarketClient()
        self._rate_limiter = rate_limiter or RateLimiter(
            max_requests_per_minute=s.rate_limit_per_minute,
            min_delay=s.rate_limit_min_delay,
        )
        self._cache = cache or TTLCache(
            default_ttl=s.cache_ttl,
            max_entries=s.cache_max_entries,
        )

        logger.info(
            "PolymarketService initialized: cache TTL %.0fs, min liquidity %.0f, min 24h volume %.0f",
            self._cache.default_ttl, s.min_liquidity, s.min_volume_24hr,
        )

    def _valid(self, raws: list[JsonDict]) -> list[JsonDict]:
        return filter_valid_markets(raws, self._settings.min_valid_liquidity)

    async def _fetch_trending_raw(self, limit: int) -> list[JsonDict]:
        events = await self._rate_limiter.enqueue(
            lambda: self._client.get_events(
                closed=False,
                active=True,
                order="volume",
                ascending=False,
                limit=min(limit, MAX_PAGE_SIZE),
            )
        )
        return self._valid(_markets_from_events(events))

    async def get_trending_markets(self, limit: int = 100) -> list[Market]:
        """Markets from the highest-volume events, busiest first."""

        async def fetch() -> list[JsonDict]:
            valid = await self._fetch_trending_raw(limit)
            valid.sort(key=_sort_volume, reverse=True)
            return valid[:limit]

        raws = await self._cache.get_or_fetch(f"trending_markets_{limit}", fetch)
        return transform_markets(raws, self.source_id).markets

    async def get_active_markets(self, limit: int = 100) -> list[Market]:
        """Active markets meeting the liquidity and 24h volume floors."""
        s = self._settings

        async def fetch() -> list[JsonDict]:
            raws = await self._rate_limiter.enqueue(
                lambda: self._client.get_markets(
                    active=True,
                    closed=False,
                    archived=False,
                    # Fetch extra to account for filtering
                    limit=min(limit * 2, 2 * MAX_PAGE_SIZE),
                )
            )
            valid = []
            for raw in self._valid(raws):
                liquidity = to_float(raw.get("liquidity"))
                if liquidity and liquidity < s.min_liquidity:
                    continue
                volume = _volume_24hr(raw)
                if volume and volume < s.min_volume_24hr:
                    continue
                valid.append(raw)
            return valid[:limit]

        raws = await self._cache.get_or_fetch(f"active_markets_{limit}", fetch)
        return transform_markets(raws, self.source_id).markets

    async def get_markets_by_category(self, tags: list[str], limit: int = 100) -> list[Market]:
        """Markets from events carrying any of ``tags``, de-duplicated by id."""

        async def fetch() -> list[JsonDict]:
            by_id: dict[str, JsonDict] = {}
            for tag in tags:
                events = await self._rate_limiter.enqueue(
                    lambda tag=tag: self._client.get_events(
                        tag=tag, closed=False, active=True, limit=50,
                    )
                )
                for raw in _markets_from_events(events):
                    by_id[str(raw.get("id"))] = raw
            return self._valid(list(by_id.values()))[:limit]

        key = f"markets_category_{'_'.join(tags)}_{limit}"
        raws = await self._cache.get_or_fetch(key, fetch)
        return transform_markets(raws, self.source_id).markets

    async def get_markets_with_positions(self, limit: int = 100) -> TransformBatch:
        """Trending markets together with their YES/NO positions."""

        async def fetch() -> list[JsonDict]:
            return (await self._fetch_trending_raw(limit))[:limit]

        raws = await self._cache.get_or_fetch(f"markets_with_positions_{limit}", fetch)
        batch = transform_markets(raws, self.source_id)
        logger.info(
            "Fetched %d markets with positions (%d with prices)",
            batch.kept, len(batch.positions),
        )
        return batch

    async def fetch_batch(self) -> TransformBatch:
        """One scan's worth of data for the scanner."""
        return await self.get_markets_with_positions(self._settings.scan_limit)

    async def get_market_with_positions(self, market_id: str) -> tuple[Market, list[Position]] | None:
        raw = await self._cache.get_or_fetch(
            f"market_{market_id}",
            lambda: self._rate_limiter.enqueue(lambda: self._client.get_market_by_id(market_id)),
        )
        if not is_market_valid(raw, self._settings.min_valid_liquidity):
            logger.warning("Market %s is not valid for arbitrage", market_id)
            return None
        return transform_record(raw, self.source_id)

    async def get_token_prices(self, token_ids: list[str]) -> dict[str, float]:
        """Live CLOB prices for the given tokens, one throttled request each.

        Tokens whose price can't be fetched are left out.
        """
        results = await asyncio.gather(
            *(
                self._rate_limiter.enqueue(lambda token_id=token_id: self._client.get_price(token_id))
                for token_id in token_ids
            ),
            return_exceptions=True,
        )
        prices: dict[str, float] = {}
        for token_id, result in zip(token_ids, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to fetch price for token %s: %s", token_id, result)
            else:
                prices[token_id] = result
        return prices

    async def health_check(self) -> bool:
        healthy = await self._client.health_check()
        logger.info("Polymarket health check: %s", "ok" if healthy else "failing")
        return healthy

    def rate_limiter_status(self) -> RateLimiterStatus:
        return self._rate_limiter.status()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> PolymarketService:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
