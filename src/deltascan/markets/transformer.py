"""Convert raw Polymarket records into Market and Position records.

Gamma payloads are loosely typed: prices arrive either as a structured
``tokens`` list or as stringified JSON arrays (``outcomePrices``,
``clobTokenIds``) that need a second parse. Keys also come in both the
camelCase Gamma form and the snake_case CLOB form.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime

from deltascan.common.types import FAR_FUTURE, JsonDict, parse_iso, to_float, utcnow
from deltascan.markets.models import (
    Market,
    MarketStatus,
    Position,
    PriceExtraction,
    PricesFound,
    PricesNotFound,
    Side,
    TransformBatch,
)

logger = logging.getLogger(__name__)

# Yes + No must land in this band for a record to be trusted
PRICE_SUM_MIN = 0.8
PRICE_SUM_MAX = 1.2

DEFAULT_MIN_LIQUIDITY = 100.0

POLYMARKET_URL = "https://polymarket.com"

_RECORD_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


def _get(raw: JsonDict, *keys: str) -> object:
    """First non-None value among ``keys``."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _flag(raw: JsonDict, *keys: str) -> bool | None:
    """Read a boolean flag; None when absent."""
    value = _get(raw, *keys)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _price(value: object) -> float | None:
    price = to_float(value)
    if price is None or not math.isfinite(price):
        return None
    return price


def parse_stringified_array(value: object) -> list[str]:
    """Parse a JSON-encoded array such as ``'["0.55","0.45"]'``.

    Lists are accepted as-is. Anything unparseable yields an empty list.
    """
    if not value:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    if not isinstance(value, str):
        return []
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Failed to parse stringified array: %.80s", value)
        return []
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed]


def _find_token(tokens: list, outcome: str) -> dict | None:
    for token in tokens:
        if not isinstance(token, dict):
            continue
        name = token.get("outcome")
        if isinstance(name, str) and name.strip().lower() == outcome:
            return token
    return None


def extract_yes_no_prices(raw: JsonDict) -> PriceExtraction:
    """Extract YES/NO prices, trying each encoding in order.

    1. ``tokens``: list of {outcome, price, token_id}, matched by outcome name
    2. ``outcomePrices``: stringified array, [yes, no], with ``clobTokenIds``
       paired positionally when present
    """
    tokens = raw.get("tokens")
    if isinstance(tokens, list) and len(tokens) >= 2:
        yes_token = _find_token(tokens, "yes")
        no_token = _find_token(tokens, "no")
        if yes_token is not None and no_token is not None:
            yes = _price(yes_token.get("price"))
            no = _price(no_token.get("price"))
            if yes is not None and no is not None:
                yes_tid = yes_token.get("token_id")
                no_tid = no_token.get("token_id")
                return PricesFound(
                    yes=yes,
                    no=no,
                    yes_token_id=str(yes_tid) if yes_tid is not None else None,
                    no_token_id=str(no_tid) if no_tid is not None else None,
                )

    prices = parse_stringified_array(_get(raw, "outcomePrices", "outcome_prices"))
    if len(prices) >= 2:
        yes = _price(prices[0])
        no = _price(prices[1])
        if yes is not None and no is not None:
            yes_id: str | None = None
            no_id: str | None = None
            token_ids = parse_stringified_array(_get(raw, "clobTokenIds", "clob_token_ids"))
            if len(token_ids) >= 2:
                yes_id, no_id = token_ids[0], token_ids[1]
            return PricesFound(yes=yes, no=no, yes_token_id=yes_id, no_token_id=no_id)

    return PricesNotFound("no yes/no tokens and no usable outcomePrices")


def prices_within_tolerance(prices: PricesFound) -> bool:
    return PRICE_SUM_MIN <= prices.total <= PRICE_SUM_MAX


def determine_market_status(raw: JsonDict) -> MarketStatus:
    """Collapse the source's status flags into a MarketStatus."""
    if _flag(raw, "closed") or _flag(raw, "archived"):
        return MarketStatus.CLOSED

    active = _flag(raw, "active")
    accepting = _flag(raw, "acceptingOrders", "accepting_orders")

    if active:
        return MarketStatus.ACTIVE if accepting else MarketStatus.SUSPENDED
    if active is False:
        return MarketStatus.SUSPENDED
    return MarketStatus.ACTIVE


def is_market_valid(raw: JsonDict, min_liquidity: float = DEFAULT_MIN_LIQUIDITY) -> bool:
    """Whether a record is tradable and priced sanely enough to scan."""
    if not _flag(raw, "active") or _flag(raw, "closed") or _flag(raw, "archived"):
        return False

    if not _flag(raw, "acceptingOrders", "accepting_orders"):
        return False

    prices = extract_yes_no_prices(raw)
    if isinstance(prices, PricesNotFound):
        return False

    if not prices_within_tolerance(prices):
        logger.warning(
            "Invalid price sum for market %s: YES=%.4f + NO=%.4f = %.4f",
            raw.get("id"), prices.yes, prices.no, prices.total,
        )
        return False

    liquidity = to_float(_get(raw, "liquidity", "liquidityNum"))
    if liquidity is not None and liquidity < min_liquidity:
        return False

    return True


def filter_valid_markets(
    raws: list[JsonDict], min_liquidity: float = DEFAULT_MIN_LIQUIDITY,
) -> list[JsonDict]:
    return [raw for raw in raws if is_market_valid(raw, min_liquidity)]


def _market_url(raw: JsonDict, market_id: str) -> str:
    slug = _get(raw, "market_slug", "slug")
    if slug:
        return f"{POLYMARKET_URL}/event/{slug}"
    return f"{POLYMARKET_URL}/market/{market_id}"


def _category(raw: JsonDict) -> str | None:
    events = raw.get("events")
    if isinstance(events, list) and events and isinstance(events[0], dict):
        slug = events[0].get("slug")
        return str(slug) if slug else None
    return None


def _build_market(raw: JsonDict, source_id: str) -> Market:
    market_id = str(raw["id"])
    close_time = parse_iso(_get(raw, "end_date_iso", "endDate")) or FAR_FUTURE
    return Market(
        id=market_id,
        source_id=source_id,
        title=str(_get(raw, "question", "title") or ""),
        close_time=close_time,
        status=determine_market_status(raw),
        url=_market_url(raw, market_id),
        volume=to_float(_get(raw, "volume", "volumeNum")),
        liquidity=to_float(_get(raw, "liquidity", "liquidityNum")),
        description=str(raw.get("description") or ""),
        category=_category(raw),
    )


def _build_positions(
    raw: JsonDict,
    source_id: str,
    prices: PricesFound,
    observed_at: datetime,
) -> list[Position]:
    market_id = str(raw["id"])
    liquidity = to_float(_get(raw, "liquidity", "liquidityNum"))
    # No per-side depth in the listing; split the market's liquidity evenly
    side_liquidity = liquidity / 2 if liquidity else None

    return [
        Position(
            market_id=market_id,
            source_id=source_id,
            side=side,
            probability=price,
            display_probability=price * 100,
            observed_at=observed_at,
            available_liquidity=side_liquidity,
            token_id=token_id,
        )
        for side, price, token_id in (
            (Side.YES, prices.yes, prices.yes_token_id),
            (Side.NO, prices.no, prices.no_token_id),
        )
    ]


def transform_record(
    raw: JsonDict,
    source_id: str,
    observed_at: datetime | None = None,
) -> tuple[Market, list[Position]] | None:
    """Transform one record into a Market and its YES/NO Positions.

    Returns None (and logs) when the record can't be priced, prices fall
    outside [0, 1] or outside the sum tolerance, or required fields are
    missing.
    """
    market_id = raw.get("id") if isinstance(raw, dict) else None
    try:
        prices = extract_yes_no_prices(raw)
        if isinstance(prices, PricesNotFound):
            logger.warning("Skipping market %s: %s", market_id, prices.reason)
            return None

        if not (0.0 <= prices.yes <= 1.0 and 0.0 <= prices.no <= 1.0):
            logger.warning(
                "Skipping market %s: out-of-range prices YES=%.4f NO=%.4f",
                market_id, prices.yes, prices.no,
            )
            return None

        if not prices_within_tolerance(prices):
            logger.warning(
                "Skipping market %s: YES+NO=%.4f outside [%.1f, %.1f]",
                market_id, prices.total, PRICE_SUM_MIN, PRICE_SUM_MAX,
            )
            return None

        market = _build_market(raw, source_id)
        positions = _build_positions(raw, source_id, prices, observed_at or utcnow())
    except _RECORD_ERRORS as exc:
        logger.warning("Error transforming market %s: %s", market_id, exc)
        return None

    return market, positions


def transform_market(raw: JsonDict, source_id: str) -> Market | None:
    result = transform_record(raw, source_id)
    return result[0] if result else None


def transform_to_positions(
    raw: JsonDict, source_id: str, observed_at: datetime | None = None,
) -> list[Position]:
    result = transform_record(raw, source_id, observed_at)
    return result[1] if result else []


def transform_markets(
    raws: list[JsonDict],
    source_id: str,
    observed_at: datetime | None = None,
) -> TransformBatch:
    """Transform a batch, dropping records that fail.

    All positions in the batch share one observation time.
    """
    observed_at = observed_at or utcnow()
    batch = TransformBatch(source_id=source_id)

    for raw in raws:
        result = transform_record(raw, source_id, observed_at)
        if result is None:
            batch.dropped += 1
            continue
        market, positions = result
        batch.markets.append(market)
        batch.positions[market.id] = positions

    logger.info(
        "Transformed %s markets: input=%d kept=%d dropped=%d",
        source_id, len(raws), batch.kept, batch.dropped,
    )
    return batch
