"""
Notification dispatcher.

Fans a payload out to every enabled channel of an organization that
subscribed to the payload's event. Channels are sent concurrently and
in isolation: one slow or failing endpoint never blocks or fails the
others, and ``dispatch`` itself never raises. Each channel is wrapped in
a circuit breaker that persists across dispatches.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from src.notifications.channels import CircuitBreaker, NotificationChannel, build_channel
from src.notifications.config import NotificationConfig
from src.notifications.exceptions import (
    ChannelConfigError,
    NotificationError,
    SSRFRejectedError,
)
from src.notifications.repository import ChannelRepository
from src.notifications.schemas import (
    ChannelRecord,
    DispatchResult,
    NotificationField,
    NotificationPayload,
    SendTestResult,
)
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[str, dict[str, Any], NotificationConfig], NotificationChannel]


def build_test_payload(channel_type: str) -> NotificationPayload:
    """Fixed payload used to check that a channel config works."""
    return NotificationPayload(
        event="alert",
        title="SitePulse Test Notification",
        message="This is a test notification. If you can read this, the channel is configured correctly.",
        severity="info",
        fields=[
            NotificationField(label="Type", value=channel_type.upper()),
            NotificationField(label="Time", value=datetime.now(timezone.utc).isoformat()),
        ],
    )


class NotificationDispatcher:
    """
    Route payloads to an organization's channels.

    Usage:
        dispatcher = NotificationDispatcher(ChannelRepository(db))
        result = await dispatcher.dispatch("org-1", payload)
        # result.total == number of subscribed channels, result.failed <= total
    """

    def __init__(
        self,
        repository: ChannelRepository,
        config: NotificationConfig | None = None,
        channel_factory: ChannelFactory = build_channel,
    ) -> None:
        self._repo = repository
        self._config = config or NotificationConfig()
        self._channel_factory = channel_factory
        self._breakers: dict[str, CircuitBreaker] = {}
        self._metrics = get_metrics()

    async def dispatch(self, organization_id: str, payload: NotificationPayload) -> DispatchResult:
        """
        Send ``payload`` to every subscribed channel.

        Returns the tally; a lookup failure counts as zero channels.
        """
        try:
            records = await self._repo.list_enabled_for_event(organization_id, payload.event)
        except Exception:
            logger.exception("Channel lookup failed for organization %s", organization_id)
            return DispatchResult()

        if not records:
            return DispatchResult()

        results = await asyncio.gather(
            *(self._send_one(record, payload) for record in records),
            return_exceptions=True,
        )
        failed = sum(1 for r in results if r is not True)

        logger.info(
            "Dispatched %s '%s' to organization %s: %d/%d delivered",
            payload.event,
            payload.title,
            organization_id,
            len(records) - failed,
            len(records),
        )
        return DispatchResult(total=len(records), failed=failed)

    async def send_test(self, channel_type: str, config: dict[str, Any]) -> SendTestResult:
        """Validate ``config`` and send the test payload, bypassing breakers."""
        try:
            channel = self._channel_factory(channel_type, config, self._config)
            await channel.send(build_test_payload(channel_type))
        except (ChannelConfigError, SSRFRejectedError) as e:
            return SendTestResult(ok=False, error_kind="validation", message=str(e))
        except NotificationError as e:
            return SendTestResult(ok=False, error_kind="transport", message=str(e))
        except Exception as e:
            logger.exception("Unexpected error sending %s test notification", channel_type)
            return SendTestResult(ok=False, error_kind="transport", message=str(e))
        return SendTestResult(ok=True, message="Test notification sent")

    def breaker_for(self, record: ChannelRecord) -> CircuitBreaker:
        """Breaker for the channel, rebuilt around a fresh sender on each call."""
        channel = self._channel_factory(record.type, record.config, self._config)
        breaker = self._breakers.get(record.id)
        if breaker is None:
            breaker = CircuitBreaker(
                channel,
                failure_threshold=self._config.circuit_breaker_threshold,
                recovery_timeout=self._config.circuit_breaker_recovery_seconds,
            )
            self._breakers[record.id] = breaker
        else:
            breaker.replace_channel(channel)
        return breaker

    async def _send_one(self, record: ChannelRecord, payload: NotificationPayload) -> bool:
        started = time.monotonic()
        channel_type = record.type.lower()
        try:
            await self.breaker_for(record).send(payload)
        except NotificationError as e:
            logger.warning(
                "Delivery to %s channel %s failed: %s", channel_type, record.id, e
            )
            self._metrics.record_notification(channel_type, False, time.monotonic() - started)
            return False
        except Exception:
            logger.exception("Unexpected error delivering to channel %s", record.id)
            self._metrics.record_notification(channel_type, False, time.monotonic() - started)
            return False

        self._metrics.record_notification(channel_type, True, time.monotonic() - started)
        return True
