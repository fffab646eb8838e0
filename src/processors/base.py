"""Base class for job processors.

Every processor starts with the same tenant check: the site named in the
payload is re-read scoped by ``(site_id, organization_id, is_active)``.
A site that moved tenants or was deactivated after the job was enqueued
produces a ``skipped`` result, never an error, and no writes.
"""

import logging
from abc import ABC, abstractmethod

from src.jobs.schemas import Job, JobKind, JobPayload, ProcessResult, parse_payload
from src.sites.repository import SiteRepository
from src.sites.schemas import Site

logger = logging.getLogger(__name__)

SITE_NOT_FOUND = "site_not_found_or_denied"


class JobProcessor(ABC):
    """Runs one job kind. Subclasses implement ``run``."""

    kind: JobKind

    def __init__(self, sites: SiteRepository) -> None:
        self._sites = sites

    async def process(self, job: Job) -> ProcessResult:
        """
        Validate the payload, check the tenant and run.

        Raises:
            PayloadValidationError: Stored payload no longer matches its schema.
            JobError: Any failure from ``run``; the worker reports it to the store.
        """
        payload = parse_payload(self.kind, job.payload)
        site = await self._sites.get_active_site(payload.site_id, payload.organization_id)
        if site is None:
            logger.info(
                "Skipping %s job %s: site %s not active in organization %s",
                self.kind.value,
                job.job_id,
                payload.site_id,
                payload.organization_id,
            )
            return ProcessResult.skipped(SITE_NOT_FOUND)
        return await self.run(job, payload, site)

    @abstractmethod
    async def run(self, job: Job, payload: JobPayload, site: Site) -> ProcessResult:
        """Do the work for a job whose tenant has been verified."""
