"""Stateless rule evaluation.

Maps a rule and a site's daily series to a verdict. Missing data never
counts as a violation: it yields ``violated=False`` with a reason.
"""

from src.alerts.config import AlertConfig
from src.alerts.schemas import Verdict
from src.performance.schemas import MetricSeriesPoint

_FIELD_BY_METRIC = {
    "LCP": "lcp_pctl",
    "INP": "inp_pctl",
    "CLS": "cls_pctl",
}


def pick_latest(
    series: list[MetricSeriesPoint], device: str
) -> tuple[MetricSeriesPoint | None, MetricSeriesPoint | None]:
    """Newest and second-newest points for ``device``, one per distinct date."""
    points = sorted((p for p in series if p.device == device), key=lambda p: p.date, reverse=True)
    latest = points[0] if points else None
    prev = next((p for p in points[1:] if p.date != latest.date), None) if latest else None
    return latest, prev


def evaluate(
    metric: str,
    threshold: float,
    device: str,
    series: list[MetricSeriesPoint],
) -> Verdict:
    latest, prev = pick_latest(series, device)
    if latest is None:
        return Verdict(violated=False, reason="no-latest")

    if metric == "SCORE_DROP":
        if prev is None:
            return Verdict(violated=False, reason="no-prev", latest_date=latest.date)
        if latest.perf_score_avg is None or prev.perf_score_avg is None:
            return Verdict(violated=False, reason="no-score", latest_date=latest.date)
        drop = float(prev.perf_score_avg - latest.perf_score_avg)
        return Verdict(violated=drop > threshold, value=drop, latest_date=latest.date)

    attr = _FIELD_BY_METRIC.get(metric)
    if attr is None:
        raise ValueError(f"Unknown alert metric {metric!r}")
    value = getattr(latest, attr)
    if value is None:
        return Verdict(violated=False, reason=f"no-{metric.lower()}", latest_date=latest.date)
    return Verdict(violated=value > threshold, value=float(value), latest_date=latest.date)


def severity_for(metric: str, value: float, threshold: float, config: AlertConfig) -> str:
    """``critical`` when the value overshoots the threshold by the configured ratio."""
    if threshold <= 0:
        return "critical"
    ratio = config.score_drop_critical_ratio if metric == "SCORE_DROP" else config.critical_ratio
    return "critical" if value >= threshold * ratio else "warning"
