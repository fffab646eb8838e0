"""
Prometheus metrics for the sync and alerting pipeline.

Defines and exposes metrics for:
- Job enqueue/processing rates and latency per kind
- Queue depth and dead-letter counts
- Alert evaluation outcomes
- Notification delivery results
- Rate limiter rejections and fail-open events

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Jobs range from sub-second score recalculations to multi-minute crawls
JOB_LATENCY_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 180.0, 600.0)
SEND_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """
    Prometheus metrics collector for site-pulse.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_job_result("site-crawl", "ok", latency=12.4)
        metrics.record_notification("SLACK", success=True)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Job counters
        self.jobs_enqueued = Counter(
            "site_pulse_jobs_enqueued_total",
            "Jobs accepted by the job store",
            ["kind", "deduplicated"],
        )

        self.jobs_processed = Counter(
            "site_pulse_jobs_processed_total",
            "Jobs finished by workers",
            ["kind", "status"],  # status: ok, skipped, retry, dead_letter
        )

        self.job_latency = Histogram(
            "site_pulse_job_latency_seconds",
            "Wall time spent in a processor",
            ["kind"],
            buckets=JOB_LATENCY_BUCKETS,
        )

        # Queue metrics
        self.queue_depth = Gauge(
            "site_pulse_queue_depth",
            "Jobs per kind and state",
            ["kind", "state"],
        )

        # Alerting
        self.alert_outcomes = Counter(
            "site_pulse_alert_outcomes_total",
            "Per-rule evaluation outcomes",
            ["metric", "action"],  # action: created, skipped, resolved, noop
        )

        # Notifications
        self.notifications_sent = Counter(
            "site_pulse_notifications_total",
            "Channel delivery attempts",
            ["channel_type", "status"],  # status: success, failed
        )

        self.notification_latency = Histogram(
            "site_pulse_notification_latency_seconds",
            "Time to deliver to one channel",
            ["channel_type"],
            buckets=SEND_LATENCY_BUCKETS,
        )

        # Rate limiting
        self.rate_limit_rejections = Counter(
            "site_pulse_rate_limit_rejections_total",
            "Requests rejected by the sliding-window limiter",
            ["scope"],
        )

        self.rate_limit_fail_open = Counter(
            "site_pulse_rate_limit_fail_open_total",
            "Checks allowed because the counter store was unreachable",
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        port = port or get_settings().metrics_port
        start_http_server(port, registry=REGISTRY)
        logger.info("Prometheus metrics server started on port %d", port)

    # Convenience methods

    def record_enqueue(self, kind: str, deduplicated: bool = False) -> None:
        self.jobs_enqueued.labels(
            kind=kind, deduplicated=str(deduplicated).lower()
        ).inc()

    def record_job_result(
        self, kind: str, status: str, latency: float | None = None
    ) -> None:
        """
        Record the outcome of one processed job.

        Args:
            kind: Job kind value
            status: ok, skipped, retry or dead_letter
            latency: Processor wall time in seconds
        """
        self.jobs_processed.labels(kind=kind, status=status).inc()
        if latency is not None:
            self.job_latency.labels(kind=kind).observe(latency)

    def set_queue_depth(self, kind: str, counts: dict[str, int]) -> None:
        for state, value in counts.items():
            self.queue_depth.labels(kind=kind, state=state).set(value)

    def record_alert_outcome(self, metric: str, action: str) -> None:
        self.alert_outcomes.labels(metric=metric, action=action).inc()

    def record_notification(
        self, channel_type: str, success: bool, latency: float | None = None
    ) -> None:
        status = "success" if success else "failed"
        self.notifications_sent.labels(channel_type=channel_type, status=status).inc()
        if latency is not None:
            self.notification_latency.labels(channel_type=channel_type).observe(latency)

    def record_rate_limit_rejection(self, scope: str) -> None:
        self.rate_limit_rejections.labels(scope=scope).inc()

    def record_rate_limit_fail_open(self) -> None:
        self.rate_limit_fail_open.inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
