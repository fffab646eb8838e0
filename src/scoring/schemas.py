"""Data models for the site SEO score.

The score combines five components, each scored 0-100:
- click_trend: clicks over the last 30 days vs the 30 before
- position: average rank, adjusted by its trend
- impression_trend: impressions over the same two periods
- ctr_benchmark: click-through rate against industry bands
- performance: latest mobile PageSpeed score
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from src.search.schemas import PeriodTotals

Grade = Literal["A+", "A", "B", "C", "D", "F"]
Trend = Literal["up", "down", "stable"]


class TrendData(BaseModel):
    current: float = 0.0
    previous: float = 0.0
    change_percent: float = 0.0
    trend: Trend = "stable"


class ComponentScore(BaseModel):
    """One component's score plus the notes it contributed."""

    score: int = Field(default=0, ge=0, le=100)
    trend: TrendData | None = None
    improvements: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)


class ScoreInputs(BaseModel):
    """Everything the calculator reads, gathered by the caller."""

    current: PeriodTotals
    previous: PeriodTotals
    perf_score: int | None = None


class ScoreComponents(BaseModel):
    click_trend: ComponentScore
    position: ComponentScore
    impression_trend: ComponentScore
    ctr_benchmark: ComponentScore
    performance: ComponentScore


class SeoScore(BaseModel):
    """Weighted score for one site on one day."""

    site_id: str
    score_date: date
    overall: int = Field(ge=0, le=100)
    grade: Grade
    components: ScoreComponents
    improvements: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)

    def component_scores(self) -> dict[str, int]:
        return {
            "click_trend": self.components.click_trend.score,
            "position": self.components.position.score,
            "impression_trend": self.components.impression_trend.score,
            "ctr_benchmark": self.components.ctr_benchmark.score,
            "performance": self.components.performance.score,
        }
