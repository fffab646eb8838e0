"""
PageSpeed Insights client.

One ``run`` call is one Lighthouse run for one URL and strategy. Throttling
(429) and temporary unavailability (503) are retried in-process with
min(60s, 1s * 2^n) backoff. A per-day call counter in Redis keeps the
process under the API's quota; when Redis is unreachable the counter is
skipped and the call proceeds.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis

from src.jobs.exceptions import TransientExternalError
from src.performance.config import PageSpeedConfig
from src.performance.schemas import PageSpeedResult
from src.providers.http_client import ProviderHTTPClient, RetryConfig

logger = logging.getLogger(__name__)

# Lighthouse audit id -> PageSpeedResult field (numericValue)
_LAB_AUDITS = {
    "largest-contentful-paint": "lcp_ms",
    "interaction-to-next-paint": "inp_ms",
    "cumulative-layout-shift": "cls",
    "server-response-time": "ttfb_ms",
    "first-contentful-paint": "fcp_ms",
    "speed-index": "speed_index_ms",
}

# CrUX metric -> (PageSpeedResult field, divisor)
_FIELD_METRICS = {
    "LARGEST_CONTENTFUL_PAINT_MS": ("field_lcp_p75", 1.0),
    "INTERACTION_TO_NEXT_PAINT": ("field_inp_p75", 1.0),
    # CrUX reports CLS multiplied by 100
    "CUMULATIVE_LAYOUT_SHIFT_SCORE": ("field_cls_p75", 100.0),
}


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_pagespeed_response(url: str, strategy: str, body: dict[str, Any]) -> PageSpeedResult:
    """Extract score, lab audits and field percentiles from a PSI response.

    Anything absent from the response is left as None.
    """
    lighthouse = body.get("lighthouseResult") or {}
    performance = (lighthouse.get("categories") or {}).get("performance") or {}
    raw_score = _number(performance.get("score"))
    audits = lighthouse.get("audits") or {}

    values: dict[str, Any] = {}
    for audit_id, attr in _LAB_AUDITS.items():
        values[attr] = _number((audits.get(audit_id) or {}).get("numericValue"))

    field_metrics = (body.get("loadingExperience") or {}).get("metrics") or {}
    for metric, (attr, divisor) in _FIELD_METRICS.items():
        percentile = _number((field_metrics.get(metric) or {}).get("percentile"))
        values[attr] = percentile / divisor if percentile is not None else None

    return PageSpeedResult(
        url=url,
        strategy=strategy.upper(),
        score=round(raw_score * 100) if raw_score is not None else None,
        lighthouse_version=lighthouse.get("lighthouseVersion"),
        **values,
    )


class PageSpeedClient:
    """
    Runs PageSpeed Insights tests.

    Example:
        client = PageSpeedClient(api_key="...", redis_client=redis_client)
        result = await client.run("https://example.com", "MOBILE")
        print(result.score, result.lcp_ms)
    """

    def __init__(
        self,
        api_key: str = "",
        config: PageSpeedConfig | None = None,
        redis_client: redis.Redis | None = None,
    ) -> None:
        self._api_key = api_key
        self._config = config or PageSpeedConfig()
        self._redis = redis_client
        self._retry = RetryConfig(
            max_retries=self._config.max_retries,
            max_backoff_seconds=self._config.max_backoff_seconds,
            base_delay=1.0,
            jitter_factor=0.0,
            retryable_statuses=frozenset({429, 503}),
        )

    async def run(self, url: str, strategy: str) -> PageSpeedResult:
        """
        Run one test.

        Raises:
            TransientExternalError: Daily cap reached, throttling persisted,
                timeout or server error.
            ExternalRequestError: PSI rejected the request (bad URL, bad key).
        """
        await self._reserve_daily_call()

        params: dict[str, Any] = {
            "url": url,
            "strategy": strategy.lower(),
            "category": "performance",
        }
        if self._api_key:
            params["key"] = self._api_key

        async with ProviderHTTPClient(self._retry, timeout=self._config.timeout_seconds) as client:
            response = await client.request("GET", self._config.api_url, params=params)

        result = parse_pagespeed_response(url, strategy, response.json())
        logger.info(
            "PageSpeed %s %s: score=%s lcp=%s inp=%s cls=%s",
            strategy.upper(),
            url,
            result.score,
            result.lcp_ms,
            result.inp_ms,
            result.cls,
        )
        return result

    async def _reserve_daily_call(self) -> None:
        if self._redis is None:
            return
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        key = f"pagespeed:calls:{day}"
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, 2 * 86400)
        except redis.RedisError as e:
            logger.warning("PageSpeed daily counter unavailable, proceeding: %s", e)
            return

        if count > self._config.daily_cap:
            raise TransientExternalError(
                f"PageSpeed daily cap of {self._config.daily_cap} calls reached",
                status_code=429,
            )
