"""Notification payloads, channel records and delivery tallies."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ChannelType = Literal["SLACK", "WEBHOOK"]
NotificationEvent = Literal["alert", "report", "uptime"]
Severity = Literal["info", "warning", "critical"]

VALID_CHANNEL_TYPES: frozenset[str] = frozenset({"SLACK", "WEBHOOK"})
VALID_EVENTS: frozenset[str] = frozenset({"alert", "report", "uptime"})
VALID_SEVERITIES: frozenset[str] = frozenset({"info", "warning", "critical"})


@dataclass(frozen=True)
class NotificationField:
    label: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "value": self.value}


@dataclass
class NotificationPayload:
    """A structured event to fan out to an organization's channels."""

    event: str
    title: str
    message: str
    severity: str = "info"
    url: str | None = None
    fields: list[NotificationField] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.event not in VALID_EVENTS:
            raise ValueError(
                f"Invalid event {self.event!r}. Must be one of: {sorted(VALID_EVENTS)}"
            )
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "url": self.url,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class ChannelRecord:
    """A row of ``notification_channels``. ``config`` is not yet validated."""

    id: str
    organization_id: str
    type: str
    config: dict[str, Any]
    name: str = ""
    events: list[str] = field(default_factory=lambda: ["alert"])
    enabled: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "ChannelRecord":
        config = row["config"]
        if isinstance(config, str):
            config = json.loads(config)
        return cls(
            id=row["id"],
            organization_id=row["organization_id"],
            type=row["type"],
            name=row["name"],
            config=config or {},
            events=list(row["events"] or []),
            enabled=row["enabled"],
            created_at=row["created_at"],
        )


@dataclass
class DispatchResult:
    """Delivery tally. ``failed`` counts channels that did not accept the payload."""

    total: int = 0
    failed: int = 0

    @property
    def succeeded(self) -> int:
        return self.total - self.failed

    def __add__(self, other: "DispatchResult") -> "DispatchResult":
        return DispatchResult(self.total + other.total, self.failed + other.failed)

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "failed": self.failed}


@dataclass
class SendTestResult:
    """Outcome of a "test connection" send.

    ``error_kind`` is ``validation`` for a bad config (including a target
    the SSRF guard rejects) and ``transport`` for an unreachable channel.
    """

    ok: bool
    error_kind: Literal["validation", "transport"] | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "error_kind": self.error_kind, "message": self.message}
