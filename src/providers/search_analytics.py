"""
Search-analytics providers.

Two implementations of the same ``query`` contract:
- GoogleSearchConsoleProvider: Search Console API, one request per day so
  every stored row is a true daily row
- MockSearchAnalyticsProvider: deterministic rows for local runs and sites
  without credentials

Credential acquisition happens elsewhere; the live provider receives a
ready access token.
"""

import logging
import random
from collections.abc import Iterator, Sequence
from datetime import date, timedelta
from typing import Any, Protocol
from urllib.parse import quote, urlparse

from src.config.settings import Settings, get_settings
from src.providers.http_client import ProviderHTTPClient, RetryConfig
from src.search.config import SearchSyncConfig
from src.search.schemas import DEFAULT_DIMENSIONS, SearchRow

logger = logging.getLogger(__name__)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Each date from start to end inclusive."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


class SearchAnalyticsProvider(Protocol):
    name: str

    async def query(
        self,
        property_url: str,
        start_date: date,
        end_date: date,
        dimensions: Sequence[str] = DEFAULT_DIMENSIONS,
    ) -> list[SearchRow]: ...


def _parse_row(day: date, row: dict[str, Any], dimensions: Sequence[str]) -> SearchRow:
    keys = dict(zip(dimensions, row.get("keys") or []))
    return SearchRow(
        date=day,
        page=str(keys.get("page", "")),
        query=str(keys.get("query", "")),
        device=str(keys.get("device") or "all").lower(),
        country=str(keys.get("country") or "all").lower(),
        clicks=int(row.get("clicks") or 0),
        impressions=int(row.get("impressions") or 0),
        ctr=float(row.get("ctr") or 0.0) * 100,
        position=float(row.get("position") or 0.0),
    )


class GoogleSearchConsoleProvider:
    """Search Console ``searchAnalytics.query`` client."""

    name = "google"

    def __init__(self, access_token: str, config: SearchSyncConfig | None = None) -> None:
        self._access_token = access_token
        self._config = config or SearchSyncConfig()

    async def query(
        self,
        property_url: str,
        start_date: date,
        end_date: date,
        dimensions: Sequence[str] = DEFAULT_DIMENSIONS,
    ) -> list[SearchRow]:
        """
        Fetch daily rows for ``[start_date, end_date]``.

        Raises:
            TransientExternalError: Timeouts, throttling or 5xx after retries.
            ExternalRequestError: Property not accessible or bad request.
        """
        url = (
            f"{self._config.api_base_url}/sites/"
            f"{quote(property_url, safe='')}/searchAnalytics/query"
        )
        row_limit = self._config.row_limit
        rows: list[SearchRow] = []

        async with ProviderHTTPClient(
            RetryConfig(max_retries=self._config.max_retries),
            timeout=self._config.timeout_seconds,
            headers={"Authorization": f"Bearer {self._access_token}"},
        ) as client:
            for day in iter_days(start_date, end_date):
                start_row = 0
                while True:
                    response = await client.request(
                        "POST",
                        url,
                        json_body={
                            "startDate": day.isoformat(),
                            "endDate": day.isoformat(),
                            "dimensions": list(dimensions),
                            "rowLimit": row_limit,
                            "startRow": start_row,
                            "aggregationType": "auto",
                        },
                    )
                    page = response.json().get("rows") or []
                    rows.extend(_parse_row(day, r, dimensions) for r in page)
                    if len(page) < row_limit:
                        break
                    start_row += row_limit

        logger.info(
            "Fetched %d search rows for %s (%s..%s)",
            len(rows),
            property_url,
            start_date,
            end_date,
        )
        return rows


class MockSearchAnalyticsProvider:
    """
    Deterministic stand-in for the live provider.

    Rows for a given (property, day) are always the same, so repeated
    syncs over overlapping ranges upsert identical values.
    """

    name = "mock"

    _QUERIES = ("brand", "pricing", "how to", "best tools", "reviews")
    _PATHS = ("/", "/pricing", "/blog", "/features")
    _DEVICES = ("desktop", "mobile")

    async def query(
        self,
        property_url: str,
        start_date: date,
        end_date: date,
        dimensions: Sequence[str] = DEFAULT_DIMENSIONS,
    ) -> list[SearchRow]:
        host = urlparse(property_url).netloc or property_url.removeprefix("sc-domain:")
        origin = f"https://{host}"
        rows: list[SearchRow] = []

        for day in iter_days(start_date, end_date):
            rng = random.Random(f"{property_url}|{day.isoformat()}")
            for path in self._PATHS:
                for query in self._QUERIES[: rng.randint(2, len(self._QUERIES))]:
                    device = rng.choice(self._DEVICES)
                    impressions = rng.randint(20, 400)
                    clicks = rng.randint(0, impressions // 5)
                    rows.append(
                        SearchRow(
                            date=day,
                            page=f"{origin}{path}",
                            query=f"{host.split('.')[0]} {query}",
                            device=device,
                            country="usa",
                            clicks=clicks,
                            impressions=impressions,
                            ctr=round(clicks / impressions * 100, 2),
                            position=round(rng.uniform(1.0, 40.0), 1),
                        )
                    )
        return rows


def build_search_provider(
    settings: Settings | None = None,
    config: SearchSyncConfig | None = None,
) -> SearchAnalyticsProvider:
    """Live provider when credentials are configured, otherwise the mock."""
    settings = settings or get_settings()
    if settings.search_provider_configured:
        return GoogleSearchConsoleProvider(settings.search_api_access_token, config)
    if not settings.mock_search_data:
        logger.warning("Search API credentials not configured, using mock search data")
    return MockSearchAnalyticsProvider()
