"""In-memory TTL cache for upstream responses."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cachetools import TLRUCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _expires_at(_key: str, entry: tuple[float, float, Any], now: float) -> float:
    # entry is (stored_at, ttl, value)
    return now + entry[1]


class TTLCache:
    """Key/value store whose entries go stale after a time-to-live.

    Entries live in a ``cachetools.TLRUCache``, which drops them once the TTL
    they were stored with runs out and evicts the least recently used entry
    when full. A shorter ``ttl`` passed on read also counts an entry as
    stale. Fetcher failures are never stored.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be > 0, got {default_ttl}")
        if max_entries <= 0:
            raise ValueError(f"max_entries must be > 0, got {max_entries}")
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: TLRUCache[str, tuple[float, float, Any]] = TLRUCache(
            maxsize=max_entries, ttu=_expires_at, timer=clock,
        )

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Return the cached value for ``key`` or fetch, store and return it."""
        if ttl is None:
            ttl = self._default_ttl

        entry = self._entries.get(key)
        if entry is not None:
            stored_at, _, value = entry
            if self._clock() - stored_at < ttl:
                logger.debug("Cache hit: %s", key)
                return value
            self._entries.pop(key, None)

        logger.debug("Cache miss: %s", key)
        value = await fetcher()
        self._entries[key] = (self._clock(), ttl, value)
        return value

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Cache cleared")

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
