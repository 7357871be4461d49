"""Shared async HTTP client with retry on transport failures."""

from __future__ import annotations

import logging

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from deltascan.config import get_settings

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    """Retry on connection errors and timeouts only.

    Error responses (non-2xx) are not retried; the scan cycle treats them
    as a failed fetch.
    """
    return isinstance(exc, httpx.TransportError)


_retry_decorator = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


class HttpClient:
    """Async HTTP client with retry logic."""

    def __init__(
        self,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        if timeout is None:
            timeout = get_settings().http_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=httpx.Timeout(timeout),
        )

    @_retry_decorator
    async def get(self, url: str, params: dict | None = None) -> httpx.Response:
        logger.debug("GET %s params=%s", url, params)
        resp = await self._client.get(url, params=params)
        resp.raise_for_status()
        return resp

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
