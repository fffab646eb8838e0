"""Job pipeline error taxonomy.

Retry decisions hang off these types: anything ``retryable = False`` is
dead-lettered on first failure, everything else follows the job's
backoff policy until its attempts are exhausted.
"""


class JobError(Exception):
    """Base class for job pipeline errors."""

    retryable: bool = True


class PayloadValidationError(JobError):
    """Payload does not match the schema for its job kind."""

    retryable = False


class UnknownJobError(JobError):
    """Referenced job id does not exist in the store."""

    retryable = False


class LeaseLostError(JobError):
    """Ack/fail/extend attempted with a lease the caller no longer holds.

    Raised when the job already reached a terminal state or was re-leased
    to another worker after this worker's lease expired.
    """


class TransientExternalError(JobError):
    """Provider timeout, 5xx or throttling. Retried via job backoff."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExternalRequestError(JobError):
    """Provider rejected the request (4xx other than throttling)."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitExceededError(JobError):
    """A rate-limited operation was refused.

    Attributes:
        retry_after_seconds: Seconds until the window admits another call.
    """

    def __init__(self, key: str, retry_after_seconds: int) -> None:
        super().__init__(f"Rate limit exceeded for {key}; retry in {retry_after_seconds}s")
        self.key = key
        self.retry_after_seconds = retry_after_seconds


class SiteAccessError(JobError):
    """Site is missing, inactive or owned by another organization."""

    retryable = False
