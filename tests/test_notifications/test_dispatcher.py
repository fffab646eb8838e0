"""Tests for NotificationDispatcher fan-out and test sends."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.notifications.channels import CircuitState
from src.notifications.config import NotificationConfig
from src.notifications.dispatcher import NotificationDispatcher, build_test_payload
from src.notifications.exceptions import (
    ChannelConfigError,
    ChannelDeliveryError,
    SSRFRejectedError,
)
from src.notifications.repository import ChannelRepository
from src.notifications.schemas import ChannelRecord, NotificationPayload


@pytest.fixture
def payload():
    return NotificationPayload(event="alert", title="LCP alert", message="2700 ms", severity="warning")


def _record(channel_id, channel_type="WEBHOOK", **config):
    return ChannelRecord(
        id=channel_id,
        organization_id="org-1",
        type=channel_type,
        config=config or {"url": f"https://{channel_id}.example.com/"},
    )


class FakeChannel:
    def __init__(self, name="webhook", error=None, delay=0.0):
        self.name = name
        self.error = error
        self.delay = delay
        self.sent = []

    async def send(self, payload):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(payload)


def _dispatcher(records, channels, config=None):
    repo = MagicMock()
    repo.list_enabled_for_event = AsyncMock(return_value=records)

    def factory(channel_type, config, settings):
        return channels[config["url"]]

    return NotificationDispatcher(repo, config=config, channel_factory=factory), repo


class TestDispatch:

    @pytest.mark.asyncio
    async def test_all_delivered(self, payload):
        a, b = FakeChannel(), FakeChannel()
        records = [_record("a"), _record("b")]
        dispatcher, repo = _dispatcher(
            records, {"https://a.example.com/": a, "https://b.example.com/": b}
        )

        result = await dispatcher.dispatch("org-1", payload)

        assert (result.total, result.failed, result.succeeded) == (2, 0, 2)
        assert a.sent == [payload] and b.sent == [payload]
        repo.list_enabled_for_event.assert_awaited_once_with("org-1", "alert")

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, payload):
        good = FakeChannel(delay=0.01)
        channels = {
            "https://a.example.com/": FakeChannel(error=ChannelDeliveryError("500")),
            "https://b.example.com/": good,
            "https://c.example.com/": FakeChannel(error=RuntimeError("bug")),
        }
        dispatcher, _ = _dispatcher([_record("a"), _record("b"), _record("c")], channels)

        result = await dispatcher.dispatch("org-1", payload)

        assert (result.total, result.failed) == (3, 2)
        assert good.sent == [payload]

    @pytest.mark.asyncio
    async def test_no_channels(self, payload):
        dispatcher, _ = _dispatcher([], {})
        result = await dispatcher.dispatch("org-1", payload)
        assert (result.total, result.failed) == (0, 0)

    @pytest.mark.asyncio
    async def test_lookup_failure_never_raises(self, payload):
        dispatcher, repo = _dispatcher([], {})
        repo.list_enabled_for_event.side_effect = ConnectionError("db down")

        result = await dispatcher.dispatch("org-1", payload)

        assert result.total == 0

    @pytest.mark.asyncio
    async def test_invalid_stored_config_counts_as_failed(self, payload):
        repo = MagicMock()
        repo.list_enabled_for_event = AsyncMock(
            return_value=[_record("bad", url="http://insecure.example.com/")]
        )
        dispatcher = NotificationDispatcher(repo)

        result = await dispatcher.dispatch("org-1", payload)

        assert (result.total, result.failed) == (1, 1)

    @pytest.mark.asyncio
    async def test_breaker_persists_across_dispatches(self, payload):
        failing = FakeChannel(error=ChannelDeliveryError("down"))
        config = NotificationConfig(circuit_breaker_threshold=2)
        dispatcher, _ = _dispatcher(
            [_record("a")], {"https://a.example.com/": failing}, config=config
        )

        await dispatcher.dispatch("org-1", payload)
        await dispatcher.dispatch("org-1", payload)
        breaker = dispatcher.breaker_for(_record("a"))

        assert breaker.state == CircuitState.OPEN
        result = await dispatcher.dispatch("org-1", payload)
        assert result.failed == 1


class TestSendTest:

    @pytest.mark.asyncio
    async def test_success(self):
        channel = FakeChannel(name="slack")
        dispatcher = NotificationDispatcher(
            repository=None, channel_factory=lambda t, c, s: channel
        )

        result = await dispatcher.send_test("slack", {})

        assert result.ok
        assert result.message == "Test notification sent"
        assert channel.sent[0].title == "SitePulse Test Notification"
        assert channel.sent[0].fields[0].value == "SLACK"

    @pytest.mark.asyncio
    async def test_invalid_config_is_validation_error(self):
        result = await NotificationDispatcher(repository=None).send_test(
            "SLACK", {"webhookUrl": "https://example.com/"}
        )
        assert not result.ok
        assert result.error_kind == "validation"

    @pytest.mark.asyncio
    async def test_ssrf_is_validation_error(self):
        channel = FakeChannel(error=SSRFRejectedError("resolves to 10.0.0.1"))
        dispatcher = NotificationDispatcher(None, channel_factory=lambda t, c, s: channel)

        result = await dispatcher.send_test("WEBHOOK", {})

        assert result.error_kind == "validation"
        assert "10.0.0.1" in result.message

    @pytest.mark.asyncio
    async def test_unreachable_is_transport_error(self):
        channel = FakeChannel(error=ChannelDeliveryError("Endpoint responded with 503", 503))
        dispatcher = NotificationDispatcher(None, channel_factory=lambda t, c, s: channel)

        result = await dispatcher.send_test("WEBHOOK", {})

        assert result.to_dict() == {
            "ok": False,
            "error_kind": "transport",
            "message": "Endpoint responded with 503",
        }

    @pytest.mark.asyncio
    async def test_out_of_range_port_is_validation_error(self):
        result = await NotificationDispatcher(repository=None).send_test(
            "WEBHOOK", {"url": "https://example.com:99999/hook"}
        )

        assert not result.ok
        assert result.error_kind == "validation"
        assert "port" in result.message

    @pytest.mark.asyncio
    async def test_unexpected_error_is_transport_error(self):
        channel = FakeChannel(error=RuntimeError("boom"))
        dispatcher = NotificationDispatcher(None, channel_factory=lambda t, c, s: channel)

        result = await dispatcher.send_test("WEBHOOK", {})

        assert result.error_kind == "transport"
        assert result.message == "boom"

    def test_build_test_payload(self):
        payload = build_test_payload("webhook")
        assert payload.event == "alert"
        assert payload.severity == "info"
        assert [f.label for f in payload.fields] == ["Type", "Time"]


class TestChannelRepository:

    @pytest.mark.asyncio
    async def test_rows_mapped(self, mock_db):
        mock_db.fetch.return_value = [
            {
                "id": "c1",
                "organization_id": "org-1",
                "type": "WEBHOOK",
                "name": "Ops",
                "config": '{"url": "https://hooks.example.com/"}',
                "events": ["alert", "report"],
                "enabled": True,
                "created_at": None,
            }
        ]

        records = await ChannelRepository(mock_db).list_enabled_for_event("org-1", "alert")

        assert records[0].config == {"url": "https://hooks.example.com/"}
        assert records[0].events == ["alert", "report"]
        assert mock_db.fetch.await_args.args[1:] == ("org-1", "alert")
