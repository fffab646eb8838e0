"""Core Web Vitals ratings and daily aggregation of snapshots."""

from collections.abc import Sequence
from datetime import date
from typing import Literal

from src.performance.schemas import MetricSeriesPoint, PerfSnapshot

CwvRating = Literal["good", "needs-improvement", "poor"]

# (good upper bound, needs-improvement upper bound)
CWV_THRESHOLDS: dict[str, tuple[float, float]] = {
    "lcp": (2500.0, 4000.0),
    "inp": (200.0, 500.0),
    "cls": (0.1, 0.25),
}


def rate_metric(metric: str, value: float | None) -> CwvRating | None:
    """Rate one vital. None when the value is missing."""
    if value is None:
        return None
    good, needs_improvement = CWV_THRESHOLDS[metric]
    if value <= good:
        return "good"
    if value <= needs_improvement:
        return "needs-improvement"
    return "poor"


def summarize_cwv(
    lcp_ms: float | None, inp_ms: float | None, cls: float | None
) -> dict[str, CwvRating | None]:
    return {
        "lcp": rate_metric("lcp", lcp_ms),
        "inp": rate_metric("inp", inp_ms),
        "cls": rate_metric("cls", cls),
    }


def _first_present(values: Sequence[float | None]) -> float | None:
    for value in values:
        if value is not None:
            return value
    return None


def aggregate_daily(
    day: date, device: str, snapshots: Sequence[PerfSnapshot]
) -> MetricSeriesPoint:
    """
    Collapse one day's snapshots into a series point.

    Percentiles prefer field (p75) data from the most recent snapshot that
    has it and fall back to the most recent lab value. The score is the
    rounded mean of reported scores. Metrics nobody reported stay None.
    """
    ordered = sorted(snapshots, key=lambda s: s.taken_at, reverse=True)
    results = [s.result for s in ordered]

    def pick(field_name: str, lab_name: str) -> float | None:
        field_value = _first_present([getattr(r, field_name) for r in results])
        if field_value is not None:
            return field_value
        return _first_present([getattr(r, lab_name) for r in results])

    scores = [r.score for r in results if r.score is not None]
    return MetricSeriesPoint(
        date=day,
        device=device,
        lcp_pctl=pick("field_lcp_p75", "lcp_ms"),
        inp_pctl=pick("field_inp_p75", "inp_ms"),
        cls_pctl=pick("field_cls_p75", "cls"),
        perf_score_avg=round(sum(scores) / len(scores)) if scores else None,
        pages_measured=len(results),
    )
