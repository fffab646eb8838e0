"""
HTTP layer for external data providers.

Provides:
- RetryConfig: Exponential backoff configuration with a cap
- ProviderHTTPClient: Async client that retries throttling, 5xx and
  network errors in-process before giving up

When in-process retries are exhausted the client raises job-level
errors, so the job store takes over with its own, much longer backoff:
- TransientExternalError for timeouts, connection errors, 429 and 5xx
- ExternalRequestError for any other 4xx (retrying will not help)
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.jobs.exceptions import ExternalRequestError, TransientExternalError

logger = logging.getLogger(__name__)

_RETRYABLE_EXCEPTIONS = (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError)


@dataclass
class RetryConfig:
    """
    Backoff for in-process retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 3
    max_backoff_seconds: float = 60.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1
    retryable_statuses: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )

    def calculate_backoff(self, attempt: int) -> float:
        """Backoff for a 0-indexed retry attempt, jitter included."""
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retryable_statuses


class ProviderHTTPClient:
    """
    Async HTTP client with retry logic.

    Example:
        async with ProviderHTTPClient(RetryConfig(max_retries=4), timeout=60) as client:
            response = await client.request("GET", url, params={"strategy": "mobile"})
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ProviderHTTPClient":
        self._client = httpx.AsyncClient(timeout=self.timeout, headers=self._headers)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Execute a request, retrying retryable failures.

        Raises:
            TransientExternalError: Retryable failure persisted past max_retries.
            ExternalRequestError: Non-retryable 4xx response.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient must be used as async context manager")

        attempts = self.retry_config.max_retries + 1
        for attempt in range(attempts):
            try:
                response = await self._client.request(
                    method, url, params=params, headers=headers, json=json_body
                )
            except _RETRYABLE_EXCEPTIONS as e:
                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        "Retryable error %s for %s, attempt %d/%d, backing off %.2fs",
                        type(e).__name__,
                        url,
                        attempt + 1,
                        attempts,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TransientExternalError(
                    f"Request to {url} failed after {attempts} attempts: {type(e).__name__}"
                ) from e

            if self.retry_config.is_retryable_status(response.status_code):
                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        "Retryable status %d from %s, attempt %d/%d, backing off %.2fs",
                        response.status_code,
                        url,
                        attempt + 1,
                        attempts,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TransientExternalError(
                    f"Request to {url} returned {response.status_code} after {attempts} attempts",
                    status_code=response.status_code,
                )

            if response.status_code >= 500:
                raise TransientExternalError(
                    f"Request to {url} returned {response.status_code}",
                    status_code=response.status_code,
                )
            if response.status_code >= 400:
                raise ExternalRequestError(
                    f"Request to {url} returned {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )
            return response

        raise TransientExternalError(f"Request to {url} failed after {attempts} attempts")
