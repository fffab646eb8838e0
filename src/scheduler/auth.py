"""Shared-secret check for the external cron trigger surface."""

import hmac

from src.scheduler.exceptions import CronAuthError

_BEARER = "bearer "


def verify_cron_secret(authorization: str | None, secret: str | None) -> None:
    """
    Check an ``Authorization: Bearer <secret>`` header value.

    The comparison runs in constant time. An unset secret rejects every
    request rather than allowing all of them.

    Raises:
        CronAuthError: Secret not configured, header missing or token wrong.
    """
    if not secret:
        raise CronAuthError("Cron secret is not configured")
    if not authorization or authorization[: len(_BEARER)].lower() != _BEARER:
        raise CronAuthError("Missing bearer token")

    token = authorization[len(_BEARER):].strip()
    if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        raise CronAuthError("Invalid bearer token")
