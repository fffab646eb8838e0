"""Alert evaluation cycle.

Wraps the stateless evaluator with the event lifecycle: open an event on
a new violation, debounce repeats on the same day, resolve events once
a later day is clean. Notifications for created events are fanned out
after all rules are evaluated; dispatch failures are tallied, never
raised.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone

from src.alerts.config import AlertConfig
from src.alerts.evaluator import evaluate, severity_for
from src.alerts.repository import AlertRepository
from src.alerts.schemas import (
    METRIC_LABELS,
    AlertEvent,
    AlertRule,
    CycleSummary,
    RuleOutcome,
)
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.schemas import DispatchResult, NotificationField, NotificationPayload
from src.observability.metrics import get_metrics
from src.performance.repository import PerformanceRepository
from src.performance.schemas import MetricSeriesPoint

logger = logging.getLogger(__name__)

OPEN_RECENT = "open-recent"
DUPLICATE_RULE = "duplicate-rule"


def format_value(metric: str, value: float) -> str:
    if metric == "CLS":
        return f"{value:.3f}"
    if metric == "SCORE_DROP":
        return f"{value:g} points"
    return f"{value:.0f} ms"


class AlertEngine:
    """Runs one evaluation pass over every enabled rule.

    Usage:
        engine = AlertEngine(AlertRepository(db), PerformanceRepository(db), dispatcher)
        summary = await engine.run_cycle()
        # summary.created, summary.skipped, summary.resolved, summary.notifications
    """

    def __init__(
        self,
        alert_repo: AlertRepository,
        performance: PerformanceRepository,
        dispatcher: NotificationDispatcher | None = None,
        config: AlertConfig | None = None,
    ) -> None:
        self._alerts = alert_repo
        self._performance = performance
        self._dispatcher = dispatcher
        self._config = config or AlertConfig()
        self._metrics = get_metrics()

    async def run_cycle(self, now: datetime | None = None) -> CycleSummary:
        now = now or datetime.now(timezone.utc)
        today = now.date()
        summary = CycleSummary()

        rules = await self._alerts.list_enabled_rules()
        if not rules:
            logger.info("Alert cycle: no enabled rules")
            return summary

        longest = max(rule.window_days for rule in rules)
        site_ids = sorted({rule.site_id for rule in rules})
        series_by_site = await self._performance.get_series_for_sites(
            site_ids, today - timedelta(days=longest + 1)
        )

        seen: set[tuple[str, str, str]] = set()
        pending: dict[str, list[NotificationPayload]] = defaultdict(list)

        for rule in rules:
            if rule.tuple_key in seen:
                # Another rule already decided this tuple in this pass
                outcome = RuleOutcome(rule.id, "skipped", reason=DUPLICATE_RULE)
            else:
                seen.add(rule.tuple_key)
                series = self._window(series_by_site.get(rule.site_id, []), rule, today)
                try:
                    outcome, payload = await self._apply_rule(rule, series, now)
                except Exception as e:
                    logger.exception("Alert rule %s failed", rule.id)
                    outcome, payload = RuleOutcome(rule.id, "error", reason=str(e)), None
                if payload is not None:
                    pending[rule.organization_id].append(payload)

            self._metrics.record_alert_outcome(rule.metric, outcome.action)
            summary.outcomes.append(outcome)

        summary.notifications = await self._notify(pending)

        logger.info(
            "Alert cycle: %d rules, %d created, %d skipped, %d resolved, "
            "notifications %d/%d failed",
            len(rules),
            summary.created,
            summary.skipped,
            summary.resolved,
            summary.notifications.failed,
            summary.notifications.total,
        )
        return summary

    @staticmethod
    def _window(
        series: list[MetricSeriesPoint], rule: AlertRule, today: date
    ) -> list[MetricSeriesPoint]:
        since = today - timedelta(days=rule.window_days + 1)
        return [p for p in series if p.date >= since]

    async def _apply_rule(
        self,
        rule: AlertRule,
        series: list[MetricSeriesPoint],
        now: datetime,
    ) -> tuple[RuleOutcome, NotificationPayload | None]:
        verdict = evaluate(rule.metric, rule.threshold, rule.device, series)

        if verdict.violated:
            existing = await self._alerts.find_open_on_date(
                rule.site_id, rule.metric, rule.device, verdict.latest_date
            )
            if existing is not None:
                return RuleOutcome(rule.id, "skipped", reason=OPEN_RECENT, event_id=existing.id), None

            event = AlertEvent(
                rule_id=rule.id,
                site_id=rule.site_id,
                metric=rule.metric,
                device=rule.device,
                date=verdict.latest_date,
                value=verdict.value,
            )
            if not await self._alerts.create_event(event):
                # Lost a race with a concurrent cycle
                return RuleOutcome(rule.id, "skipped", reason=OPEN_RECENT), None

            logger.info(
                "Alert opened for site %s: %s %s = %s (threshold %s)",
                rule.site_id,
                rule.metric,
                rule.device,
                verdict.value,
                rule.threshold,
            )
            return (
                RuleOutcome(rule.id, "created", event_id=event.id),
                self.build_payload(rule, event),
            )

        # Missing data is not a recovery
        if verdict.reason is not None or verdict.latest_date is None:
            return RuleOutcome(rule.id, "none", reason=verdict.reason), None

        open_events = await self._alerts.list_open(rule.site_id, rule.metric, rule.device)
        # Same-day recoveries do not resolve; the condition must clear on a later day
        stale = [e.id for e in open_events if e.date < verdict.latest_date]
        if not stale:
            return RuleOutcome(rule.id, "none", reason=verdict.reason), None

        resolved = await self._alerts.resolve_events(stale, now)
        logger.info(
            "Resolved %d alert events for site %s %s %s",
            resolved,
            rule.site_id,
            rule.metric,
            rule.device,
        )
        return RuleOutcome(rule.id, "resolved", resolved=resolved), None

    def build_payload(self, rule: AlertRule, event: AlertEvent) -> NotificationPayload:
        label = METRIC_LABELS.get(rule.metric, rule.metric)
        site = rule.site_name or rule.site_url or rule.site_id
        value = format_value(rule.metric, event.value)
        threshold = format_value(rule.metric, rule.threshold)
        return NotificationPayload(
            event="alert",
            title=f"{label} alert: {site}",
            message=f"{label} on {rule.device.lower()} is {value}, above the threshold of {threshold}.",
            severity=severity_for(rule.metric, event.value, rule.threshold, self._config),
            url=f"{self._config.app_base_url.rstrip('/')}/sites/{rule.site_id}/alerts",
            fields=[
                NotificationField("Metric", rule.metric),
                NotificationField("Device", rule.device),
                NotificationField("Value", value),
                NotificationField("Threshold", threshold),
                NotificationField("Date", event.date.isoformat()),
            ],
        )

    async def _notify(self, pending: dict[str, list[NotificationPayload]]) -> DispatchResult:
        if self._dispatcher is None or not pending:
            return DispatchResult()

        async def send_all(org_id: str, payloads: list[NotificationPayload]) -> DispatchResult:
            total = DispatchResult()
            for payload in payloads:
                total = total + await self._dispatcher.dispatch(org_id, payload)
            return total

        results = await asyncio.gather(
            *(send_all(org, payloads) for org, payloads in pending.items()),
            return_exceptions=True,
        )
        tally = DispatchResult()
        for org_id, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.error("Notification fan-out failed for organization %s: %s", org_id, result)
                continue
            tally = tally + result
        return tally
