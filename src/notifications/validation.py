"""Type-specific channel config validation.

Configs are validated before a channel is saved and again before every
send. Field names follow the stored JSON (``webhookUrl`` for Slack).
"""

from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.notifications.exceptions import ChannelConfigError, SSRFRejectedError
from src.notifications.security import check_hostname

SLACK_WEBHOOK_PREFIX = "https://hooks.slack.com/"


class SlackConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    webhook_url: str = Field(alias="webhookUrl")
    channel: str | None = None

    @field_validator("webhook_url")
    @classmethod
    def _validate_webhook_url(cls, value: str) -> str:
        if not value.startswith(SLACK_WEBHOOK_PREFIX):
            raise ValueError(f"webhookUrl must start with {SLACK_WEBHOOK_PREFIX}")
        return value


class WebhookConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    secret: str | None = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme != "https" or not parts.hostname:
            raise ValueError("url must be a valid HTTPS URL")
        try:
            parts.port  # raises for out-of-range ports
        except ValueError as e:
            raise ValueError(f"url has an invalid port: {e}") from e
        try:
            check_hostname(parts.hostname)
        except SSRFRejectedError as e:
            raise ValueError(str(e)) from e
        return value


CONFIG_MODELS: dict[str, type[BaseModel]] = {
    "SLACK": SlackConfig,
    "WEBHOOK": WebhookConfig,
}


def validate_channel_config(
    channel_type: str, config: dict[str, Any] | None
) -> SlackConfig | WebhookConfig:
    """
    Parse ``config`` for ``channel_type``.

    Raises:
        ChannelConfigError: Unknown type or config does not validate.
    """
    model = CONFIG_MODELS.get(str(channel_type).upper())
    if model is None:
        raise ChannelConfigError(f"Unknown notification channel type {channel_type!r}")
    try:
        return model.model_validate(config or {})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ChannelConfigError(f"Invalid {channel_type} config: {errors}") from e
