"""
Async HTTP client wrapper for feed provider requests.
Includes retry logic, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_LATENCY, FEED_REQUESTS

logger = get_logger(__name__)

MAX_RETRY_AFTER_S = 10.0


class FeedHTTPClient:
    """
    Async HTTP client for a match-data provider.
    Retries 429, 5xx and timeouts; never retries other 4xx.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = max(1, max_retries if max_retries is not None else settings.provider_max_retries)
        self._headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str, params: dict[str, Any] | None = None, scope: str = "global") -> Any:
        """
        GET `path` and decode the JSON body.

        Raises:
            httpx.HTTPStatusError: On a non-retryable status or after the last retry.
            httpx.TransportError: If every attempt failed at the transport level.
        """
        if self._client is None:
            raise RuntimeError("FeedHTTPClient not started. Call start() first.")

        last_exc: Optional[Exception] = None
        for attempt in range(1, self._max_retries + 1):
            start = time.perf_counter()
            status = "error"
            try:
                resp = await self._client.get(path, params=params)
                status = str(resp.status_code)

                if resp.status_code == 429 and attempt < self._max_retries:
                    retry_after = _retry_after_seconds(resp)
                    logger.warning(
                        "feed_rate_limited", provider=self._provider, path=path,
                        attempt=attempt, retry_after_s=retry_after,
                    )
                    await asyncio.sleep(retry_after)
                    continue

                if resp.status_code >= 500 and attempt < self._max_retries:
                    logger.warning(
                        "feed_server_error", provider=self._provider, path=path,
                        status=resp.status_code, attempt=attempt,
                    )
                    await asyncio.sleep(1.0 * attempt)
                    continue

                resp.raise_for_status()
                logger.debug(
                    "feed_request_success", provider=self._provider, path=path,
                    latency_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                return resp.json()

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = exc
                logger.warning("feed_timeout", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "feed_transport_error", provider=self._provider, path=path,
                    attempt=attempt, error=str(exc),
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            finally:
                FEED_LATENCY.labels(provider=self._provider).observe(time.perf_counter() - start)
                FEED_REQUESTS.labels(provider=self._provider, scope=scope, status=status).inc()

        if last_exc:
            raise last_exc
        raise RuntimeError(f"Feed request failed after {self._max_retries} attempts")


def _retry_after_seconds(resp: httpx.Response) -> float:
    try:
        return min(float(resp.headers.get("Retry-After", "2")), MAX_RETRY_AFTER_S)
    except ValueError:
        return 2.0
