"""Schema definitions for alert rules, events and evaluation outcomes.

``AlertRule`` and ``AlertEvent`` map to the ``alert_rules`` and
``alert_events`` tables. Rules are user-managed; the engine only reads
them. Events move OPEN -> RESOLVED and never back.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

from src.notifications.schemas import DispatchResult

AlertMetric = Literal["LCP", "INP", "CLS", "SCORE_DROP"]
AlertDevice = Literal["ALL", "MOBILE", "DESKTOP"]
EventStatus = Literal["OPEN", "RESOLVED"]
OutcomeAction = Literal["created", "skipped", "resolved", "none", "error"]

VALID_METRICS: frozenset[str] = frozenset({"LCP", "INP", "CLS", "SCORE_DROP"})
VALID_DEVICES: frozenset[str] = frozenset({"ALL", "MOBILE", "DESKTOP"})
VALID_STATUSES: frozenset[str] = frozenset({"OPEN", "RESOLVED"})

METRIC_LABELS: dict[str, str] = {
    "LCP": "Largest Contentful Paint",
    "INP": "Interaction to Next Paint",
    "CLS": "Cumulative Layout Shift",
    "SCORE_DROP": "Performance score drop",
}


@dataclass
class AlertRule:
    """An enabled threshold rule for one site.

    Attributes:
        id: Rule identifier.
        site_id: Site the rule watches.
        metric: LCP, INP, CLS (absolute thresholds) or SCORE_DROP (delta).
        device: Series device the rule reads.
        threshold: Violation threshold in the metric's unit.
        window_days: Lookback in days; points older than window_days + 1 are ignored.
        enabled: Disabled rules are never evaluated.
        recipients: Email recipients (stored, not sent by the engine).
        organization_id: Owning tenant, joined from the site.
        site_name: Site display name, joined from the site.
        site_url: Site URL, joined from the site.
    """

    id: str
    site_id: str
    metric: str
    threshold: float
    device: str = "ALL"
    window_days: int = 1
    enabled: bool = True
    recipients: list[str] = field(default_factory=list)
    organization_id: str = ""
    site_name: str = ""
    site_url: str = ""

    def __post_init__(self) -> None:
        if self.metric not in VALID_METRICS:
            raise ValueError(
                f"Invalid metric {self.metric!r}. Must be one of: {sorted(VALID_METRICS)}"
            )
        if self.device not in VALID_DEVICES:
            raise ValueError(
                f"Invalid device {self.device!r}. Must be one of: {sorted(VALID_DEVICES)}"
            )
        if self.window_days < 1:
            raise ValueError(f"window_days must be >= 1, got {self.window_days}")

    @property
    def tuple_key(self) -> tuple[str, str, str]:
        """The (site, metric, device) tuple events are debounced on."""
        return (self.site_id, self.metric, self.device)


@dataclass
class AlertEvent:
    """A persisted threshold violation."""

    rule_id: str
    site_id: str
    metric: str
    device: str
    date: date
    value: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = "OPEN"
    created_at: datetime | None = None
    resolved_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.status not in VALID_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. Must be one of: {sorted(VALID_STATUSES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "site_id": self.site_id,
            "metric": self.metric,
            "device": self.device,
            "date": self.date.isoformat(),
            "value": self.value,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass(frozen=True)
class Verdict:
    """Result of evaluating one rule against a series.

    ``reason`` explains a non-violation caused by missing data.
    ``latest_date`` is the date of the newest point for the rule's device.
    """

    violated: bool
    value: float | None = None
    reason: str | None = None
    latest_date: date | None = None


@dataclass
class RuleOutcome:
    """What the engine did for one rule in a cycle."""

    rule_id: str
    action: str
    reason: str | None = None
    event_id: str | None = None
    resolved: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"rule_id": self.rule_id, "action": self.action}
        if self.reason:
            data["reason"] = self.reason
        if self.event_id:
            data["event_id"] = self.event_id
        if self.resolved:
            data["resolved"] = self.resolved
        return data


@dataclass
class CycleSummary:
    """Per-rule outcomes of one evaluation cycle plus the notification tally."""

    outcomes: list[RuleOutcome] = field(default_factory=list)
    notifications: DispatchResult = field(default_factory=DispatchResult)

    def count(self, action: str) -> int:
        return sum(1 for o in self.outcomes if o.action == action)

    @property
    def created(self) -> int:
        return self.count("created")

    @property
    def skipped(self) -> int:
        return self.count("skipped")

    @property
    def resolved(self) -> int:
        return sum(o.resolved for o in self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules": len(self.outcomes),
            "created": self.created,
            "skipped": self.skipped,
            "resolved": self.resolved,
            "errors": self.count("error"),
            "notifications": self.notifications.to_dict(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
