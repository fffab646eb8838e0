"""Page-speed results, stored snapshots and daily series points.

Units: times in milliseconds, CLS unitless, scores 0-100. Any metric the
provider did not report stays None all the way to storage.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Literal

Strategy = Literal["MOBILE", "DESKTOP"]
SeriesDevice = Literal["ALL", "MOBILE", "DESKTOP"]

VALID_SERIES_DEVICES: frozenset[str] = frozenset({"ALL", "MOBILE", "DESKTOP"})


@dataclass(frozen=True)
class PageSpeedResult:
    """One lab run plus whatever field (p75) data came with it."""

    url: str
    strategy: Strategy
    score: int | None = None
    lcp_ms: float | None = None
    inp_ms: float | None = None
    cls: float | None = None
    ttfb_ms: float | None = None
    fcp_ms: float | None = None
    speed_index_ms: float | None = None
    field_lcp_p75: float | None = None
    field_inp_p75: float | None = None
    field_cls_p75: float | None = None
    lighthouse_version: str | None = None

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "strategy": self.strategy,
            "score": self.score,
            "lcp_ms": self.lcp_ms,
            "inp_ms": self.inp_ms,
            "cls": self.cls,
            "ttfb_ms": self.ttfb_ms,
            "fcp_ms": self.fcp_ms,
            "speed_index_ms": self.speed_index_ms,
            "field_lcp_p75": self.field_lcp_p75,
            "field_inp_p75": self.field_inp_p75,
            "field_cls_p75": self.field_cls_p75,
            "lighthouse_version": self.lighthouse_version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PageSpeedResult":
        return cls(**data)


@dataclass
class PerfSnapshot:
    """A persisted point-in-time result for one site and device."""

    site_id: str
    result: PageSpeedResult
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def device(self) -> str:
        return self.result.strategy


@dataclass(frozen=True)
class MetricSeriesPoint:
    """Daily aggregate for one site/device/day, as read by the alert engine."""

    date: date
    device: str
    lcp_pctl: float | None = None
    inp_pctl: float | None = None
    cls_pctl: float | None = None
    perf_score_avg: float | None = None
    pages_measured: int = 0

    def __post_init__(self) -> None:
        if self.device not in VALID_SERIES_DEVICES:
            raise ValueError(
                f"Invalid device {self.device!r}. "
                f"Must be one of: {sorted(VALID_SERIES_DEVICES)}"
            )
