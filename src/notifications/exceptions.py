"""Notification error taxonomy.

``ChannelConfigError`` and ``SSRFRejectedError`` describe a bad channel
configuration; ``ChannelDeliveryError`` and ``CircuitOpenError`` describe
an unreachable or unhealthy channel. The dispatcher counts all of them as
failed deliveries and never lets them escape.
"""


class NotificationError(Exception):
    """Base class for notification failures."""


class ChannelConfigError(NotificationError):
    """Channel config failed type-specific validation."""


class SSRFRejectedError(NotificationError):
    """Webhook target is, or resolves to, a disallowed host or address."""


class ChannelDeliveryError(NotificationError):
    """Transport failure or non-2xx response from the channel endpoint."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(NotificationError):
    """Channel skipped because its circuit breaker is open."""
