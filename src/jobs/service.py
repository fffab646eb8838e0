"""Enqueue entry points used by the scheduler, the CLI and the API layer.

Wraps a ``JobStore`` with the things callers should not repeat:
payload construction from a site, dedupe keys for recurring work,
per-user rate limiting of manual triggers, tenant checks, trace
propagation and metrics.
"""

import logging
from typing import Any

from src.jobs.exceptions import RateLimitExceededError, SiteAccessError
from src.jobs.schemas import (
    EnqueueOptions,
    EnqueueResult,
    JobKind,
    JobPayload,
    QueueStatus,
    TriggerSummary,
)
from src.jobs.store import JobStore
from src.observability.metrics import get_metrics
from src.observability.tracing import inject_trace_context
from src.ratelimit.config import RateLimitConfig
from src.ratelimit.limiter import SlidingWindowRateLimiter
from src.sites.repository import SiteRepository
from src.sites.schemas import Site

logger = logging.getLogger(__name__)

PAGESPEED_DEVICES = ("MOBILE", "DESKTOP")


def dedupe_key_for(kind: JobKind, site_id: str, device: str | None = None) -> str:
    """Key shared by every pending job doing the same work for one site."""
    if kind == JobKind.PAGESPEED_TEST and device:
        return f"{kind.value}:{device.lower()}:{site_id}"
    return f"{kind.value}:{site_id}"


def build_payload(
    kind: JobKind,
    site: Site,
    device: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Payload dict for ``kind`` targeting ``site``."""
    payload: dict[str, Any] = {
        "site_id": site.id,
        "organization_id": site.organization_id,
    }
    if kind == JobKind.PAGESPEED_TEST:
        payload["url"] = site.url
        payload["device"] = device or "MOBILE"
    elif kind == JobKind.SITE_CRAWL:
        payload["url"] = site.url
    payload.update(extra)
    return payload


class JobService:
    """
    Enqueue and inspect jobs.

    Usage:
        service = JobService(store, SiteRepository(db), limiter)
        summary = await service.trigger_for_site(
            user_id="u1",
            kind=JobKind.PAGESPEED_TEST,
            site_id="s1",
            organization_id="org1",
        )
        # summary.enqueued == 2 (mobile + desktop)
    """

    def __init__(
        self,
        store: JobStore,
        sites: SiteRepository,
        limiter: SlidingWindowRateLimiter | None = None,
        rate_config: RateLimitConfig | None = None,
    ) -> None:
        self._store = store
        self._sites = sites
        self._limiter = limiter
        self._rate_config = rate_config or RateLimitConfig()
        self._metrics = get_metrics()

    @property
    def store(self) -> JobStore:
        return self._store

    async def enqueue_job(
        self,
        kind: JobKind | str,
        payload: dict[str, Any] | JobPayload,
        options: EnqueueOptions | None = None,
    ) -> EnqueueResult:
        """
        Validate and enqueue one job.

        Raises:
            PayloadValidationError: Payload does not match the kind's schema.
        """
        kind = JobKind(kind)
        result = await self._store.enqueue(
            kind, payload, options, trace_parent=inject_trace_context()
        )
        self._metrics.record_enqueue(kind.value, deduplicated=not result.created)
        if result.created:
            logger.info("Enqueued %s job %s", kind.value, result.job_id)
        return result

    async def trigger_for_site(
        self,
        user_id: str,
        kind: JobKind | str,
        site_id: str,
        organization_id: str,
        device: str | None = None,
    ) -> TriggerSummary:
        """
        User-initiated run for one site.

        A page-speed trigger without a device covers both strategies. A
        crawl trigger bypasses the recent-crawl guard. Work already pending
        for the site counts as skipped.

        Raises:
            RateLimitExceededError: User exceeded the trigger budget.
            SiteAccessError: Site is missing, inactive or in another organization.
        """
        kind = JobKind(kind)

        if self._limiter is not None:
            key = f"jobs:{user_id}"
            check = await self._limiter.check(
                key,
                self._rate_config.user_trigger_limit,
                self._rate_config.user_trigger_window_seconds,
            )
            if not check.allowed:
                raise RateLimitExceededError(key, check.retry_after_seconds)

        site = await self._sites.get_active_site(site_id, organization_id)
        if site is None:
            raise SiteAccessError(
                f"Site {site_id} is not an active site of organization {organization_id}"
            )

        extra: dict[str, Any] = {"force": True} if kind == JobKind.SITE_CRAWL else {}
        devices = self._devices_for(kind, device)
        summary = TriggerSummary()
        for dev in devices:
            result = await self.enqueue_job(
                kind,
                build_payload(kind, site, dev, **extra),
                EnqueueOptions(dedupe_key=dedupe_key_for(kind, site.id, dev)),
            )
            self._tally(summary, result)

        logger.info(
            "User %s triggered %s for site %s: enqueued=%d skipped=%d",
            user_id,
            kind.value,
            site.id,
            summary.enqueued,
            summary.skipped,
        )
        return summary

    async def enqueue_for_active_sites(
        self,
        kind: JobKind | str,
        device: str | None = None,
    ) -> TriggerSummary:
        """Recurring fan-out: one deduplicated job per active site."""
        kind = JobKind(kind)
        sites = await self._sites.list_active()
        summary = TriggerSummary()

        for site in sites:
            if kind == JobKind.SEARCH_SYNC and not site.search_configured:
                summary.skipped += 1
                continue
            for dev in self._devices_for(kind, device):
                result = await self.enqueue_job(
                    kind,
                    build_payload(kind, site, dev),
                    EnqueueOptions(dedupe_key=dedupe_key_for(kind, site.id, dev)),
                )
                self._tally(summary, result)

        logger.info(
            "Recurring %s: enqueued=%d skipped=%d across %d sites",
            kind.value,
            summary.enqueued,
            summary.skipped,
            len(sites),
        )
        return summary

    async def get_job_status(self, kind: JobKind | str) -> QueueStatus:
        kind = JobKind(kind)
        status = await self._store.get_status(kind)
        self._metrics.set_queue_depth(kind.value, status.to_dict())
        return status

    async def get_all_status(self) -> dict[str, QueueStatus]:
        return {kind.value: await self.get_job_status(kind) for kind in JobKind}

    def _devices_for(self, kind: JobKind, device: str | None) -> tuple[str | None, ...]:
        if kind != JobKind.PAGESPEED_TEST:
            return (None,)
        if device:
            return (device.upper(),)
        return PAGESPEED_DEVICES

    @staticmethod
    def _tally(summary: TriggerSummary, result: EnqueueResult) -> None:
        if result.created:
            summary.enqueued += 1
            summary.job_ids.append(result.job_id)
        else:
            summary.skipped += 1
