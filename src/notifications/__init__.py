"""Outbound notifications to Slack and signed webhooks."""

from src.notifications.channels import (
    CircuitBreaker,
    CircuitState,
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
    build_channel,
)
from src.notifications.config import NotificationConfig
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.exceptions import (
    ChannelConfigError,
    ChannelDeliveryError,
    CircuitOpenError,
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

__all__ = [
    "ChannelConfigError",
    "ChannelDeliveryError",
    "ChannelRecord",
    "ChannelRepository",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "DispatchResult",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationDispatcher",
    "NotificationError",
    "NotificationField",
    "NotificationPayload",
    "SSRFRejectedError",
    "SendTestResult",
    "SlackChannel",
    "WebhookChannel",
    "build_channel",
]
