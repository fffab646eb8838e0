"""Dead-letter depth monitoring.

Dead-lettered jobs are never retried automatically, so a growing
dead-letter view means someone has to look. The monitor compares each
kind's dead-letter count with a threshold and alerts the operator
organization, at most once per debounce window per kind.
"""

import logging
from typing import Any

from redis.exceptions import RedisError

from src.jobs.config import JobsConfig
from src.jobs.schemas import JobKind
from src.jobs.store import JobStore
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.schemas import NotificationField, NotificationPayload

logger = logging.getLogger(__name__)


class DeadLetterMonitor:
    """
    Alerts when a kind's dead-letter view grows past the threshold.

    The debounce key lives in Redis (``SET NX EX``). Without Redis, or when
    Redis errors, every check over the threshold alerts: duplicates are
    preferred over silence.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: NotificationDispatcher | None = None,
        redis_client: Any | None = None,
        ops_organization_id: str | None = None,
        config: JobsConfig | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._redis = redis_client
        self._ops_org = ops_organization_id
        self._config = config or JobsConfig()

    async def check(self) -> dict[str, int]:
        """Check every kind. Returns dead-letter counts of the kinds that alerted."""
        alerted: dict[str, int] = {}
        threshold = self._config.dead_letter_alert_threshold
        for kind in JobKind:
            status = await self._store.get_status(kind)
            if status.failed <= threshold:
                continue
            if not await self._acquire_debounce(kind):
                logger.debug("Dead-letter alert for %s debounced", kind.value)
                continue

            logger.warning(
                "Dead-letter depth for %s is %d (threshold %d)",
                kind.value,
                status.failed,
                threshold,
            )
            alerted[kind.value] = status.failed
            await self._notify(kind, status.failed, threshold)
        return alerted

    async def _acquire_debounce(self, kind: JobKind) -> bool:
        if self._redis is None:
            return True
        key = f"{self._config.key_prefix}:dlq-alert:{kind.value}"
        try:
            was_set = await self._redis.set(
                key, "1", nx=True, ex=self._config.dead_letter_alert_debounce_seconds
            )
        except RedisError as e:
            logger.warning("Dead-letter debounce check failed, alerting anyway: %s", e)
            return True
        return bool(was_set)

    async def _notify(self, kind: JobKind, count: int, threshold: int) -> None:
        if self._dispatcher is None or not self._ops_org:
            return
        payload = NotificationPayload(
            event="alert",
            title=f"Dead-letter queue growing: {kind.value}",
            message=(
                f"{count} {kind.value} jobs are dead-lettered (threshold {threshold}). "
                "Inspect them and requeue once the cause is fixed."
            ),
            severity="warning",
            fields=[
                NotificationField("Kind", kind.value),
                NotificationField("Dead-lettered", str(count)),
            ],
        )
        await self._dispatcher.dispatch(self._ops_org, payload)
