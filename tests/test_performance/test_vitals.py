"""Tests for Core Web Vitals ratings and daily aggregation."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.performance.schemas import PageSpeedResult, PerfSnapshot
from src.performance.vitals import aggregate_daily, rate_metric, summarize_cwv

DAY = date(2026, 3, 2)
BASE = datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)


def _snapshot(minutes: int, **metrics) -> PerfSnapshot:
    result = PageSpeedResult(url="https://example.com", strategy="MOBILE", **metrics)
    return PerfSnapshot(site_id="site-1", result=result, taken_at=BASE + timedelta(minutes=minutes))


class TestRateMetric:

    @pytest.mark.parametrize(
        "metric,value,expected",
        [
            ("lcp", 2500, "good"),
            ("lcp", 2501, "needs-improvement"),
            ("lcp", 4001, "poor"),
            ("inp", 200, "good"),
            ("inp", 500, "needs-improvement"),
            ("cls", 0.1, "good"),
            ("cls", 0.3, "poor"),
        ],
    )
    def test_bands(self, metric, value, expected):
        assert rate_metric(metric, value) == expected

    def test_missing_value_is_unrated(self):
        assert rate_metric("lcp", None) is None

    def test_summarize(self):
        assert summarize_cwv(1800, None, 0.2) == {
            "lcp": "good",
            "inp": None,
            "cls": "needs-improvement",
        }


class TestAggregateDaily:

    def test_prefers_field_percentiles(self):
        point = aggregate_daily(DAY, "MOBILE", [
            _snapshot(0, score=80, lcp_ms=3000, field_lcp_p75=2600),
        ])
        assert point.lcp_pctl == 2600

    def test_falls_back_to_latest_lab_value(self):
        point = aggregate_daily(DAY, "MOBILE", [
            _snapshot(0, score=70, lcp_ms=3200),
            _snapshot(30, score=90, lcp_ms=2100),
        ])
        assert point.lcp_pctl == 2100
        assert point.perf_score_avg == 80
        assert point.pages_measured == 2

    def test_partial_data_stays_null(self):
        point = aggregate_daily(DAY, "DESKTOP", [_snapshot(0, lcp_ms=1900)])

        assert point.lcp_pctl == 1900
        assert point.inp_pctl is None
        assert point.cls_pctl is None
        assert point.perf_score_avg is None

    def test_zero_cls_is_kept(self):
        point = aggregate_daily(DAY, "MOBILE", [_snapshot(0, cls=0.0)])
        assert point.cls_pctl == 0.0
