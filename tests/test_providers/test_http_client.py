"""Tests for the provider HTTP client and its retry policy."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from src.jobs.exceptions import ExternalRequestError, TransientExternalError
from src.providers.http_client import ProviderHTTPClient, RetryConfig

URL = "https://api.example.test/v1/run"


class TestRetryConfig:
    def test_backoff_doubles_without_jitter(self):
        config = RetryConfig(base_delay=1.0, jitter_factor=0.0)

        assert config.calculate_backoff(0) == 1.0
        assert config.calculate_backoff(1) == 2.0
        assert config.calculate_backoff(3) == 8.0

    def test_backoff_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_backoff_seconds=60.0, jitter_factor=0.0)
        assert config.calculate_backoff(10) == 60.0

    def test_jitter_stays_within_factor(self):
        config = RetryConfig(base_delay=4.0, jitter_factor=0.1)
        for _ in range(20):
            assert 4.0 <= config.calculate_backoff(0) <= 4.4

    def test_retryable_statuses(self):
        config = RetryConfig()
        assert config.is_retryable_status(429)
        assert config.is_retryable_status(503)
        assert not config.is_retryable_status(404)


@pytest.fixture
def no_sleep():
    with patch("src.providers.http_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestProviderHTTPClient:
    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        client = ProviderHTTPClient()
        with pytest.raises(RuntimeError):
            await client.request("GET", URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_passes_params_and_headers(self):
        route = respx.get(URL).mock(return_value=httpx.Response(200, json={"ok": True}))

        async with ProviderHTTPClient(headers={"Authorization": "Bearer t"}) as client:
            response = await client.request("GET", URL, params={"strategy": "mobile"})

        assert response.json() == {"ok": True}
        request = route.calls[0].request
        assert request.url.params["strategy"] == "mobile"
        assert request.headers["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_throttling_then_succeeds(self, no_sleep):
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(429),
                httpx.Response(503),
                httpx.Response(200, json={}),
            ]
        )

        async with ProviderHTTPClient(RetryConfig(max_retries=4)) as client:
            response = await client.request("GET", URL)

        assert response.status_code == 200
        assert route.call_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_raise_transient(self, no_sleep):
        route = respx.get(URL).mock(return_value=httpx.Response(429))

        async with ProviderHTTPClient(RetryConfig(max_retries=2)) as client:
            with pytest.raises(TransientExternalError) as exc_info:
                await client.request("GET", URL)

        assert route.call_count == 3
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_retried_then_transient(self, no_sleep):
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))

        async with ProviderHTTPClient(RetryConfig(max_retries=1)) as client:
            with pytest.raises(TransientExternalError):
                await client.request("GET", URL)

        assert no_sleep.await_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_is_not_retried(self, no_sleep):
        route = respx.get(URL).mock(return_value=httpx.Response(403, text="forbidden"))

        async with ProviderHTTPClient(RetryConfig(max_retries=3)) as client:
            with pytest.raises(ExternalRequestError) as exc_info:
                await client.request("GET", URL)

        assert route.call_count == 1
        assert exc_info.value.status_code == 403
        no_sleep.assert_not_awaited()
