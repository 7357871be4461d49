"""Polymarket Gamma + CLOB API client (read-only)."""

from __future__ import annotations

import asyncio
import logging

import httpx

from deltascan.common.http import HttpClient
from deltascan.common.types import JsonDict, to_float
from deltascan.config import get_settings

logger = logging.getLogger(__name__)

PRICE_BATCH_SIZE = 10


def build_query_params(params: dict[str, object]) -> dict[str, str]:
    """Drop None values and render booleans the way the API expects."""
    query: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        else:
            query[key] = str(value)
    return query


class PolymarketClient:
    """Thin wrapper over the Gamma (metadata) and CLOB (pricing) endpoints.

    No throttling or caching happens here; see PolymarketService.
    """

    def __init__(
        self,
        gamma_api_url: str | None = None,
        clob_api_url: str | None = None,
        api_key: str | None = None,
    ) -> None:
        settings = get_settings()
        api_key = settings.polymarket_api_key if api_key is None else api_key
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._gamma = HttpClient(base_url=gamma_api_url or settings.gamma_api_url, headers=headers)
        self._clob = HttpClient(base_url=clob_api_url or settings.clob_api_url, headers=headers)

    # Gamma

    async def get_markets(self, **params: object) -> list[JsonDict]:
        resp = await self._gamma.get("/markets", params=build_query_params(params))
        markets = resp.json()
        logger.info("Fetched %d markets from Polymarket", len(markets))
        return markets

    async def get_market_by_id(self, market_id: str) -> JsonDict:
        resp = await self._gamma.get(f"/markets/{market_id}")
        return resp.json()

    async def get_events(self, **params: object) -> list[JsonDict]:
        """Fetch events (groups of related markets, each with a ``markets`` list)."""
        resp = await self._gamma.get("/events", params=build_query_params(params))
        events = resp.json()
        logger.info("Fetched %d events from Polymarket", len(events))
        return events

    async def get_event_by_id(self, event_id: str) -> JsonDict:
        resp = await self._gamma.get(f"/events/{event_id}")
        return resp.json()

    # CLOB

    async def get_order_book(self, token_id: str) -> JsonDict:
        resp = await self._clob.get("/book", params={"token_id": token_id})
        return resp.json()

    async def get_price(self, token_id: str) -> float:
        resp = await self._clob.get("/price", params={"token_id": token_id})
        price = to_float(resp.json().get("price"))
        if price is None:
            raise ValueError(f"No price in CLOB response for token {token_id}")
        return price

    async def get_prices(self, token_ids: list[str]) -> dict[str, float]:
        """Fetch prices for many tokens, skipping tokens that fail."""
        prices: dict[str, float] = {}

        for start in range(0, len(token_ids), PRICE_BATCH_SIZE):
            batch = token_ids[start:start + PRICE_BATCH_SIZE]
            results = await asyncio.gather(
                *(self.get_price(token_id) for token_id in batch),
                return_exceptions=True,
            )
            for token_id, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.warning("Failed to fetch price for token %s: %s", token_id, result)
                else:
                    prices[token_id] = result

        logger.debug("Fetched %d/%d token prices", len(prices), len(token_ids))
        return prices

    async def health_check(self) -> bool:
        try:
            await self._gamma.get("/health")
        except httpx.HTTPError as exc:
            logger.error("Gamma health check failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        await self._gamma.close()
        await self._clob.close()

    async def __aenter__(self) -> PolymarketClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
