"""Notification channel implementations.

Provides an ABC for notification channels plus concrete implementations
for Slack incoming webhooks and generic signed webhooks. A CircuitBreaker
decorator wraps any channel so an endpoint that keeps failing is skipped
for a while instead of being hit on every alert.

Senders raise on failure; the dispatcher turns exceptions into counts.
"""

import enum
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import httpx

from src.notifications.config import NotificationConfig
from src.notifications.exceptions import (
    ChannelConfigError,
    ChannelDeliveryError,
    CircuitOpenError,
)
from src.notifications.schemas import NotificationPayload
from src.notifications.security import check_webhook_target, sanitize_headers, sign_body
from src.notifications.validation import SlackConfig, WebhookConfig, validate_channel_config

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    "info": "#3b82f6",
    "warning": "#f59e0b",
    "critical": "#ef4444",
}

# Headers user config can never set on a webhook request
_BASE_PROTECTED_HEADERS = (
    "host",
    "content-type",
    "content-length",
    "transfer-encoding",
    "connection",
    "user-agent",
)


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel type label used in logs and metrics ('slack', 'webhook')."""

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> None:
        """Deliver a payload.

        Raises:
            NotificationError: Delivery did not succeed.
        """


async def _post(url: str, timeout: float, **kwargs) -> httpx.Response:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, **kwargs)
    except httpx.TimeoutException as e:
        raise ChannelDeliveryError(f"Request timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        raise ChannelDeliveryError(f"Request failed: {type(e).__name__}: {e}") from e

    if not response.is_success:
        raise ChannelDeliveryError(
            f"Endpoint responded with {response.status_code}",
            status_code=response.status_code,
        )
    return response


class SlackChannel(NotificationChannel):
    """Posts a single color-coded attachment to a Slack incoming webhook."""

    def __init__(self, config: SlackConfig, settings: NotificationConfig | None = None) -> None:
        self._config = config
        self._settings = settings or NotificationConfig()

    @property
    def name(self) -> str:
        return "slack"

    def build_message(self, payload: NotificationPayload) -> dict:
        attachment: dict = {
            "color": SEVERITY_COLORS.get(payload.severity, SEVERITY_COLORS["info"]),
            "title": payload.title,
            "text": payload.message,
            "fields": [{"title": f.label, "value": f.value, "short": True} for f in payload.fields],
            "footer": self._settings.footer,
            "ts": int(time.time()),
        }
        if payload.url:
            attachment["title_link"] = payload.url

        message: dict = {"attachments": [attachment]}
        if self._config.channel:
            message["channel"] = self._config.channel
        return message

    async def send(self, payload: NotificationPayload) -> None:
        if not self._config.webhook_url.startswith(self._settings.slack_webhook_prefix):
            raise ChannelConfigError("Invalid Slack webhook URL")
        await _post(
            self._config.webhook_url,
            self._settings.timeout_seconds,
            json=self.build_message(payload),
        )


class WebhookChannel(NotificationChannel):
    """
    POSTs the payload as JSON to an HTTPS endpoint.

    Before every send the target is resolved and checked against the SSRF
    guard. With a secret configured the exact body bytes are signed with
    HMAC-SHA256 into the signature header.
    """

    def __init__(
        self,
        config: WebhookConfig,
        settings: NotificationConfig | None = None,
        target_check: Callable[[str], Awaitable[list[str]]] = check_webhook_target,
    ) -> None:
        self._config = config
        self._settings = settings or NotificationConfig()
        self._target_check = target_check

    @property
    def name(self) -> str:
        return "webhook"

    def build_body(self, payload: NotificationPayload, timestamp: datetime | None = None) -> bytes:
        timestamp = timestamp or datetime.now(timezone.utc)
        body = {**payload.to_dict(), "timestamp": timestamp.isoformat()}
        return json.dumps(body, separators=(",", ":")).encode("utf-8")

    def build_headers(self, body: bytes) -> dict[str, str]:
        protected = (*_BASE_PROTECTED_HEADERS, self._settings.signature_header)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._settings.user_agent,
            **sanitize_headers(self._config.headers, protected),
        }
        if self._config.secret:
            headers[self._settings.signature_header] = sign_body(self._config.secret, body)
        return headers

    async def send(self, payload: NotificationPayload) -> None:
        await self._target_check(self._config.url)
        body = self.build_body(payload)
        await _post(
            self._config.url,
            self._settings.timeout_seconds,
            content=body,
            headers=self.build_headers(body),
        )


def build_channel(
    channel_type: str,
    config: dict,
    settings: NotificationConfig | None = None,
) -> NotificationChannel:
    """
    Validate ``config`` and build the sender for ``channel_type``.

    Raises:
        ChannelConfigError: Unknown type or invalid config.
    """
    parsed = validate_channel_config(channel_type, config)
    if isinstance(parsed, SlackConfig):
        return SlackChannel(parsed, settings)
    return WebhookChannel(parsed, settings)


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(NotificationChannel):
    """Wraps a NotificationChannel with circuit breaker protection.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: All sends pass through. Consecutive failures tracked.
    - OPEN: Sends rejected with CircuitOpenError. After recovery_timeout,
      moves to HALF_OPEN.
    - HALF_OPEN: Single probe send allowed. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        failure_threshold: int = 5,
        recovery_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._channel.name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    def replace_channel(self, channel: NotificationChannel) -> None:
        """Swap the wrapped sender (config edited) keeping the failure history."""
        self._channel = channel

    async def send(self, payload: NotificationPayload) -> None:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._last_failure_time >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker %s: OPEN → HALF_OPEN (recovery probe)", self.name)
            else:
                raise CircuitOpenError(f"Circuit open for {self.name} channel")

        try:
            await self._channel.send(payload)
        except Exception:
            self._record_failure()
            raise

        if self._state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker %s: HALF_OPEN → CLOSED (probe succeeded)", self.name)
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning("Circuit breaker %s: HALF_OPEN → OPEN (probe failed)", self.name)
        elif self._consecutive_failures >= self._failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failures",
                self.name,
                self._consecutive_failures,
            )
