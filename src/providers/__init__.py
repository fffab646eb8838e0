"""External data providers: search analytics and PageSpeed Insights."""

from src.providers.http_client import ProviderHTTPClient, RetryConfig
from src.providers.pagespeed import PageSpeedClient, parse_pagespeed_response
from src.providers.search_analytics import (
    GoogleSearchConsoleProvider,
    MockSearchAnalyticsProvider,
    SearchAnalyticsProvider,
    build_search_provider,
)

__all__ = [
    "GoogleSearchConsoleProvider",
    "MockSearchAnalyticsProvider",
    "PageSpeedClient",
    "ProviderHTTPClient",
    "RetryConfig",
    "SearchAnalyticsProvider",
    "build_search_provider",
    "parse_pagespeed_response",
]
