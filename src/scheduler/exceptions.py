"""Scheduler and trigger-surface errors."""


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class CronAuthError(SchedulerError):
    """Trigger request did not carry the shared cron secret."""


class UnknownTaskError(SchedulerError):
    """No recurring task has the requested name."""
