"""Weighted SEO score calculation.

Pure functions over pre-aggregated inputs; the score processor gathers
the inputs and persists the result.
"""

from datetime import date

from src.scoring.schemas import (
    ComponentScore,
    Grade,
    ScoreComponents,
    ScoreInputs,
    SeoScore,
    TrendData,
)

WEIGHTS = {
    "click_trend": 0.25,
    "position": 0.25,
    "impression_trend": 0.20,
    "ctr_benchmark": 0.15,
    "performance": 0.15,
}

# A change within +/- this many percent counts as stable
STABLE_BAND_PERCENT = 5.0

# Position used when a period has no ranked rows
_UNRANKED_POSITION = 50.0


def grade_for(score: int) -> Grade:
    if score >= 95:
        return "A+"
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def trend_between(current: float, previous: float) -> TrendData:
    change_percent = (current - previous) / previous * 100 if previous > 0 else 0.0
    if change_percent > STABLE_BAND_PERCENT:
        trend = "up"
    elif change_percent < -STABLE_BAND_PERCENT:
        trend = "down"
    else:
        trend = "stable"
    return TrendData(
        current=current, previous=previous, change_percent=change_percent, trend=trend
    )


def score_click_trend(current: int, previous: int) -> ComponentScore:
    t = trend_between(current, previous)
    pct = t.change_percent
    result = ComponentScore(trend=t)

    if t.trend == "up":
        if pct >= 50:
            result.score = 100
            result.strengths.append("Exceptional click growth (50%+ increase)")
        elif pct >= 25:
            result.score = 85
            result.strengths.append("Strong click growth (25%+ increase)")
        elif pct >= 10:
            result.score = 75
            result.strengths.append("Good click growth (10%+ increase)")
        else:
            result.score = 65
            result.strengths.append("Positive click trend")
    elif t.trend == "down":
        if pct <= -50:
            result.score = 0
            result.improvements.append("Critical: Clicks dropped by 50%+ - investigate immediately")
        elif pct <= -25:
            result.score = 15
            result.improvements.append("Severe: Clicks dropped by 25%+ - needs urgent attention")
        elif pct <= -10:
            result.score = 30
            result.improvements.append("Clicks declining - review content and rankings")
        else:
            result.score = 45
            result.improvements.append("Slight decline in clicks - monitor and optimize")
    elif current == 0:
        result.score = 20
        result.improvements.append("No organic clicks - focus on SEO fundamentals")
    elif current < 50:
        result.score = 40
        result.improvements.append("Low click volume - improve rankings and CTR")
    else:
        result.score = 55
        result.improvements.append("Stable clicks - focus on growth opportunities")
    return result


def score_position(current: float | None, previous: float | None) -> ComponentScore:
    """Absolute rank sets the base; the trend moves it. Lower rank is better."""
    current = current or _UNRANKED_POSITION
    previous = previous or _UNRANKED_POSITION
    # Positive when the rank number fell, so "up" means ranks improved
    improvement = (previous - current) / previous * 100
    if improvement > STABLE_BAND_PERCENT:
        trend = "up"
    elif improvement < -STABLE_BAND_PERCENT:
        trend = "down"
    else:
        trend = "stable"
    t = TrendData(current=current, previous=previous, change_percent=improvement, trend=trend)

    if current <= 5:
        base = 90
    elif current <= 10:
        base = 75
    elif current <= 20:
        base = 60
    elif current <= 50:
        base = 40
    else:
        base = 20

    result = ComponentScore(trend=t)
    if t.trend == "up":
        result.score = min(100, base + 20)
        if improvement >= 20:
            result.strengths.append("Excellent position improvement (20%+ better)")
        elif improvement >= 10:
            result.strengths.append("Good position improvement (10%+ better)")
        else:
            result.strengths.append("Positions trending upward")
    elif t.trend == "down":
        result.score = max(0, base - 30)
        if improvement <= -20:
            result.improvements.append("Critical: Positions dropped significantly (20%+ worse)")
        elif improvement <= -10:
            result.improvements.append("Warning: Positions declining (10%+ worse)")
        else:
            result.improvements.append("Positions slightly declining - monitor keywords")
    else:
        result.score = base
        if current <= 10:
            result.strengths.append("Maintaining strong search positions")
        else:
            result.improvements.append("Stable but low positions - focus on ranking improvements")
    return result


def score_impression_trend(current: int, previous: int) -> ComponentScore:
    t = trend_between(current, previous)
    pct = t.change_percent
    result = ComponentScore(trend=t)

    if t.trend == "up":
        if pct >= 30:
            result.score = 95
            result.strengths.append("Exceptional impression growth (30%+ increase)")
        elif pct >= 15:
            result.score = 80
            result.strengths.append("Strong impression growth (15%+ increase)")
        else:
            result.score = 70
            result.strengths.append("Good impression growth")
    elif t.trend == "down":
        if pct <= -30:
            result.score = 10
            result.improvements.append("Critical: Impressions dropped 30%+ - check indexing issues")
        elif pct <= -15:
            result.score = 25
            result.improvements.append("Warning: Significant impression decline (15%+)")
        else:
            result.score = 45
            result.improvements.append("Impressions declining - review content freshness")
    elif current == 0:
        result.score = 15
        result.improvements.append("No search impressions - site may not be indexed properly")
    elif current < 1000:
        result.score = 35
        result.improvements.append("Low impression volume - expand content and keywords")
    else:
        result.score = 55
        result.improvements.append("Stable impressions - look for growth opportunities")
    return result


def score_ctr(ctr_percent: float) -> ComponentScore:
    """CTR bands: 10% excellent, 5% good, 2% average, 1% poor."""
    result = ComponentScore()
    label = f"{ctr_percent:.2f}%"
    if ctr_percent >= 10:
        result.score = 100
        result.strengths.append(f"Exceptional CTR ({label}) - well above industry average")
    elif ctr_percent >= 5:
        result.score = 80
        result.strengths.append(f"Strong CTR ({label}) - above industry average")
    elif ctr_percent >= 2:
        result.score = 60
        result.improvements.append(f"Average CTR ({label}) - optimize titles and descriptions")
    elif ctr_percent >= 1:
        result.score = 30
        result.improvements.append(
            f"Low CTR ({label}) - improve title and meta description appeal"
        )
    elif ctr_percent > 0:
        result.score = 15
        result.improvements.append(f"Very low CTR ({label}) - review search snippet optimization")
    else:
        result.improvements.append("No click-through data available")
    return result


def score_performance(perf_score: int | None) -> ComponentScore:
    result = ComponentScore()
    if perf_score is None:
        result.improvements.append("Run PageSpeed performance test to get score")
        return result

    result.score = max(0, min(100, perf_score))
    if perf_score >= 90:
        result.strengths.append(f"Excellent performance score ({perf_score}/100)")
    elif perf_score >= 70:
        result.improvements.append(f"Good performance ({perf_score}/100) - optimize for excellence")
    elif perf_score >= 50:
        result.improvements.append(f"Moderate performance ({perf_score}/100) - needs optimization")
    else:
        result.improvements.append(f"Poor performance ({perf_score}/100) - critical speed issues")
    return result


def calculate_score(site_id: str, score_date: date, inputs: ScoreInputs) -> SeoScore:
    """Combine the five components into a weighted 0-100 score and grade."""
    components = ScoreComponents(
        click_trend=score_click_trend(inputs.current.clicks, inputs.previous.clicks),
        position=score_position(inputs.current.avg_position, inputs.previous.avg_position),
        impression_trend=score_impression_trend(
            inputs.current.impressions, inputs.previous.impressions
        ),
        ctr_benchmark=score_ctr(inputs.current.ctr),
        performance=score_performance(inputs.perf_score),
    )

    overall = round(
        sum(getattr(components, name).score * weight for name, weight in WEIGHTS.items())
    )

    improvements: list[str] = []
    strengths: list[str] = []
    for name in WEIGHTS:
        component: ComponentScore = getattr(components, name)
        # Notes from weak components are improvements, strong ones strengths
        if component.score < 70:
            improvements.extend(component.improvements)
        else:
            strengths.extend(component.strengths)

    return SeoScore(
        site_id=site_id,
        score_date=score_date,
        overall=overall,
        grade=grade_for(overall),
        components=components,
        improvements=improvements,
        strengths=strengths,
    )
