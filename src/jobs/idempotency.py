"""Best-effort check that a job's side effect was already applied.

The dedupe key on enqueue is the primary defense against duplicate work.
This guard is the second layer, evaluated inside processors: one read
of "when did this last happen for this site" compared to a window.
Concurrent leases of different job ids for the same site can still both
pass the check; processors keep their writes idempotent for that case.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from src.jobs.schemas import JobKind
from src.jobs.store import utc_now

logger = logging.getLogger(__name__)

# (site_id, device) -> time the side effect last completed, or None
LastAppliedLookup = Callable[[str, str | None], Awaitable[datetime | None]]


class IdempotencyGuard:
    """
    Per-kind "recently applied" lookups.

    Usage:
        guard = IdempotencyGuard({
            JobKind.PAGESPEED_TEST: perf_repo.latest_snapshot_at,
            JobKind.SITE_CRAWL: crawl_repo.latest_completed_at,
        })
        if await guard.recently_applied(
            JobKind.PAGESPEED_TEST, site_id, "MOBILE", within=timedelta(hours=1)
        ):
            return ProcessResult.skipped("recently_applied")
    """

    def __init__(
        self,
        lookups: dict[JobKind, LastAppliedLookup],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lookups = lookups
        self._clock = clock

    async def recently_applied(
        self,
        kind: JobKind,
        site_id: str,
        device: str | None = None,
        *,
        within: timedelta,
    ) -> bool:
        """True when the side effect for (kind, site, device) happened inside ``within``."""
        lookup = self._lookups.get(kind)
        if lookup is None:
            return False

        last_applied = await lookup(site_id, device)
        if last_applied is None:
            return False

        recent = last_applied >= self._clock() - within
        if recent:
            logger.info(
                "%s for site %s (device=%s) already applied at %s",
                kind.value,
                site_id,
                device,
                last_applied.isoformat(),
            )
        return recent
