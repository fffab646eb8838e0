"""Tests for the weighted SEO score."""

from datetime import date

import pytest

from src.scoring.calculator import (
    WEIGHTS,
    calculate_score,
    grade_for,
    score_click_trend,
    score_ctr,
    score_impression_trend,
    score_performance,
    score_position,
    trend_between,
)
from src.scoring.schemas import ScoreInputs
from src.search.schemas import PeriodTotals


class TestHelpers:

    @pytest.mark.parametrize(
        "score,grade",
        [(100, "A+"), (95, "A+"), (94, "A"), (90, "A"), (85, "B"), (70, "C"), (60, "D"), (59, "F"), (0, "F")],
    )
    def test_grade_bands(self, score, grade):
        assert grade_for(score) == grade

    def test_trend_stable_band(self):
        assert trend_between(104, 100).trend == "stable"
        assert trend_between(106, 100).trend == "up"
        assert trend_between(94, 100).trend == "down"

    def test_trend_without_previous(self):
        t = trend_between(50, 0)
        assert t.change_percent == 0.0
        assert t.trend == "stable"

    def test_weights_sum_to_one(self):
        assert sum(WEIGHTS.values()) == pytest.approx(1.0)


class TestComponents:

    def test_click_growth(self):
        assert score_click_trend(160, 100).score == 100
        assert score_click_trend(130, 100).score == 85
        assert score_click_trend(112, 100).score == 75

    def test_click_drop(self):
        result = score_click_trend(40, 100)
        assert result.score == 0
        assert result.improvements[0].startswith("Critical")

    def test_stable_clicks_by_volume(self):
        assert score_click_trend(0, 0).score == 20
        assert score_click_trend(30, 30).score == 40
        assert score_click_trend(500, 500).score == 55

    def test_position_lower_is_better(self):
        improved = score_position(4.0, 8.0)
        assert improved.trend.trend == "up"
        assert improved.score == 100

        worse = score_position(12.0, 8.0)
        assert worse.trend.trend == "down"
        assert worse.score == 30

    def test_position_unranked(self):
        result = score_position(None, None)
        assert result.score == 40
        assert result.trend.current == 50.0

    def test_impressions(self):
        assert score_impression_trend(1400, 1000).score == 95
        assert score_impression_trend(600, 1000).score == 10
        assert score_impression_trend(0, 0).score == 15

    def test_ctr_bands(self):
        assert score_ctr(12.0).score == 100
        assert score_ctr(6.0).score == 80
        assert score_ctr(3.0).score == 60
        assert score_ctr(1.5).score == 30
        assert score_ctr(0.5).score == 15
        assert score_ctr(0.0).score == 0

    def test_performance(self):
        assert score_performance(None).score == 0
        assert score_performance(92).strengths
        assert score_performance(45).improvements[0].startswith("Poor")


class TestCalculateScore:

    def test_weighted_overall(self):
        inputs = ScoreInputs(
            current=PeriodTotals(clicks=160, impressions=1400, avg_position=4.0),
            previous=PeriodTotals(clicks=100, impressions=1000, avg_position=8.0),
            perf_score=92,
        )
        score = calculate_score("site-1", date(2026, 3, 2), inputs)

        # ctr = 160 / 1400 = 11.4%
        assert score.component_scores() == {
            "click_trend": 100,
            "position": 100,
            "impression_trend": 95,
            "ctr_benchmark": 100,
            "performance": 92,
        }
        assert score.overall == round(100 * 0.25 + 100 * 0.25 + 95 * 0.20 + 100 * 0.15 + 92 * 0.15)
        assert score.grade == "A+"
        assert score.improvements == []
        assert len(score.strengths) == 5

    def test_weak_site_collects_improvements(self):
        inputs = ScoreInputs(
            current=PeriodTotals(clicks=0, impressions=0),
            previous=PeriodTotals(clicks=0, impressions=0),
        )
        score = calculate_score("site-1", date(2026, 3, 2), inputs)

        assert score.grade == "F"
        assert "No organic clicks - focus on SEO fundamentals" in score.improvements
        assert "Run PageSpeed performance test to get score" in score.improvements
        assert score.strengths == []
