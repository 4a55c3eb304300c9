"""LangGraph nodes — pure functions that transform InsightState.

Each node:
    - Receives the full InsightState
    - Returns a partial dict update
    - Has no side effects and no wall-clock access

Forecast confidence follows one formula for both series:

    confidence = 0.3 * min(n / 30, 1)            # data quantity
               + 0.3 * min(span_days / 21, 1)    # time span covered
               + 0.4 * r_squared                 # fit strength

Forecasts below ``prediction_confidence_threshold`` are not reported.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import (
    NEGATIVE_EMOTIONS,
    POSITIVE_EMOTIONS,
    InsightType,
    ResultStatus,
    SensoryResponse,
    Severity,
    TrendDirection,
)
from compass_analytics.domain.results import Forecast, InsightReport, PredictiveInsight
from compass_analytics.graph.state import InsightState
from compass_analytics.kernels.anomalies import detect_anomalies
from compass_analytics.kernels.stats import clamp01, direction_of, linear_regression
from compass_analytics.kernels.window import within_days

logger = logging.getLogger(__name__)

_INSIGHT_ORDER = {InsightType.PREDICTION: 0, InsightType.TREND: 1, InsightType.RISK: 2}


def _config(state: InsightState) -> AnalysisConfiguration:
    return state["config"]


def _windowed(state: InsightState, items: Sequence, days: int) -> list:
    return within_days(items, days, state.get("reference"))


# ── Trend helper ─────────────────────────────────────────────────────────────


class _Trend:
    __slots__ = ("direction", "daily_rate", "confidence", "last_value", "r_squared")

    def __init__(
        self,
        direction: TrendDirection,
        daily_rate: float,
        confidence: float,
        last_value: float,
        r_squared: float,
    ) -> None:
        self.direction = direction
        self.daily_rate = daily_rate
        self.confidence = confidence
        self.last_value = last_value
        self.r_squared = r_squared

    def forecast(self, days: int, low: float, high: float) -> float:
        return max(low, min(high, self.last_value + self.daily_rate * days))


def _trend(points: list[tuple[datetime, float]], config: AnalysisConfiguration) -> Optional[_Trend]:
    if len(points) < config.enhanced_analysis.min_sample_size:
        return None
    points = sorted(points, key=lambda p: p[0])
    fit = linear_regression([v for _, v in points])
    if fit is None:
        return None
    n = len(points)
    span_days = max((points[-1][0] - points[0][0]).total_seconds() / 86400, 1.0)
    daily_rate = fit.slope * (n - 1) / span_days
    confidence = (
        0.3 * min(n / 30, 1.0)
        + 0.3 * min(span_days / 21, 1.0)
        + 0.4 * fit.r_squared
    )
    return _Trend(
        direction=direction_of(daily_rate, config.enhanced_analysis.trend_threshold),
        daily_rate=daily_rate,
        confidence=clamp01(confidence),
        last_value=fit.last_fitted,
        r_squared=fit.r_squared,
    )


def _valence(category: str, intensity: int) -> float:
    if category in POSITIVE_EMOTIONS:
        return float(intensity)
    if category in NEGATIVE_EMOTIONS:
        return -float(intensity)
    return 0.0


_SENSORY_VALUE = {
    SensoryResponse.SEEKING: 1.0,
    SensoryResponse.AVOIDING: -1.0,
    SensoryResponse.NEUTRAL: 0.0,
}


# ── 1. assess_data ──────────────────────────────────────────────────────────


def assess_data(state: InsightState) -> dict:
    """Count the usable observations and decide whether forecasting is possible."""
    config = _config(state)
    batch = state["batch"]
    days = config.time_windows.default_analysis_days
    emotions = _windowed(state, batch.emotions, days)
    sensory = _windowed(state, batch.sensory, days)
    need = config.enhanced_analysis.min_sample_size
    sufficient = len(emotions) >= need or len(sensory) >= need

    logger.debug(
        "Insight assessment for %s: emotions=%d sensory=%d need=%d",
        batch.subject_id, len(emotions), len(sensory), need,
    )
    return {
        "data_points": len(emotions) + len(sensory),
        "sufficient": sufficient,
        "insights": [],
    }


def route_after_assessment(state: InsightState) -> str:
    return "forecast" if state.get("sufficient") else "end"


# ── 2. forecast_emotions ────────────────────────────────────────────────────


def forecast_emotions(state: InsightState) -> dict:
    config = _config(state)
    emotions = _windowed(state, state["batch"].emotions, config.time_windows.default_analysis_days)
    trend = _trend([(e.timestamp, _valence(e.category, e.intensity)) for e in emotions], config)
    if trend is None or trend.confidence < config.enhanced_analysis.prediction_confidence_threshold:
        return {"insights": list(state.get("insights", []))}

    wording = {
        TrendDirection.INCREASING: "improving",
        TrendDirection.DECREASING: "declining",
        TrendDirection.STABLE: "stable",
    }[trend.direction]
    if trend.direction is TrendDirection.DECREASING:
        recommendations = (
            "Review recent changes in routine or environment",
            "Increase check-ins over the coming week",
        )
        severity = Severity.MEDIUM
    else:
        recommendations = ("Continue current supportive strategies",)
        severity = Severity.LOW

    insight = PredictiveInsight(
        insight_type=InsightType.PREDICTION,
        title="Emotional Well-being Forecast",
        description=f"Based on current trends, emotional well-being is {wording}",
        confidence=trend.confidence,
        timeframe="7-day forecast",
        forecast=Forecast(
            value=round(trend.forecast(7, -5.0, 5.0), 4),
            direction=trend.direction,
            accuracy=trend.r_squared,
        ),
        recommendations=recommendations,
        severity=severity,
    )
    return {"insights": [*state.get("insights", []), insight]}


# ── 3. forecast_sensory ─────────────────────────────────────────────────────


def forecast_sensory(state: InsightState) -> dict:
    config = _config(state)
    sensory = _windowed(state, state["batch"].sensory, config.time_windows.default_analysis_days)
    trend = _trend([(s.timestamp, _SENSORY_VALUE[s.response]) for s in sensory], config)
    if trend is None or trend.confidence < config.enhanced_analysis.prediction_confidence_threshold:
        return {"insights": list(state.get("insights", []))}

    insight = PredictiveInsight(
        insight_type=InsightType.TREND,
        title="Sensory Regulation Forecast",
        description=f"Sensory seeking/avoiding patterns show a {trend.direction.value} trend",
        confidence=trend.confidence,
        timeframe="14-day forecast",
        forecast=Forecast(
            value=round(trend.forecast(14, -1.0, 1.0), 4),
            direction=trend.direction,
            accuracy=trend.r_squared,
        ),
        recommendations=(
            "Adjust the sensory diet to match the emerging trend",
            "Review sensory supports at the next planning meeting",
        ),
        severity=Severity.LOW if trend.direction is TrendDirection.STABLE else Severity.MEDIUM,
    )
    return {"insights": [*state.get("insights", []), insight]}


# ── 4. assess_risk ──────────────────────────────────────────────────────────


def assess_risk(state: InsightState) -> dict:
    """Stress accumulation over ``short_term_days`` and recent anomalies."""
    config = _config(state)
    batch = state["batch"]
    bands = config.alert_sensitivity
    insights = list(state.get("insights", []))

    recent = _windowed(state, batch.emotions, config.time_windows.short_term_days)
    intensity_threshold = config.pattern_analysis.high_intensity_threshold / bands.emotion_intensity_multiplier
    stressed = [
        e for e in recent
        if e.category in NEGATIVE_EMOTIONS and e.intensity >= intensity_threshold
    ]
    if recent and len(stressed) >= config.enhanced_analysis.risk_assessment_threshold:
        share = len(stressed) / len(recent)
        if share >= bands.high:
            severity = Severity.HIGH
        elif share >= bands.medium:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        insights.append(PredictiveInsight(
            insight_type=InsightType.RISK,
            title="Stress Accumulation Risk",
            description=(
                f"{len(stressed)} high-stress incidents in the past "
                f"{config.time_windows.short_term_days} days"
            ),
            confidence=0.8,
            timeframe="Immediate attention needed" if severity is Severity.HIGH else "Next 2 weeks",
            recommendations=(
                "Implement immediate stress reduction strategies",
                "Review and adjust current interventions",
                "Consider environmental modifications",
            ),
            severity=severity,
        ))

    anomalies = detect_anomalies(batch, config, as_of=state.get("reference"))
    if anomalies.status is ResultStatus.OK:
        recent_anomalies = _windowed(state, anomalies.findings, config.time_windows.recent_data_days)
        severe = [a for a in recent_anomalies if a.severity is Severity.HIGH]
        if severe or len(recent_anomalies) >= config.enhanced_analysis.risk_assessment_threshold:
            insights.append(PredictiveInsight(
                insight_type=InsightType.RISK,
                title="Recent Anomaly Risk",
                description=(
                    f"{len(recent_anomalies)} unusual observation(s) in the past "
                    f"{config.time_windows.recent_data_days} days"
                ),
                confidence=anomalies.confidence,
                timeframe="Next 7 days",
                recommendations=(
                    "Review the flagged observations with the support team",
                    "Watch for repeats of the same conditions",
                ),
                severity=Severity.HIGH if severe else Severity.MEDIUM,
            ))

    return {"insights": insights}


# ── 5. compose_insights ─────────────────────────────────────────────────────


def compose_insights(state: InsightState) -> dict:
    config = _config(state)
    insights = sorted(
        state.get("insights", []),
        key=lambda i: (_INSIGHT_ORDER[i.insight_type], -i.confidence, i.title),
    )
    if insights:
        description = f"{len(insights)} forward-looking insight(s) generated"
    else:
        description = "No forward-looking insights at the current confidence threshold"
    report = InsightReport(
        insights=tuple(insights),
        confidence=max((i.confidence for i in insights), default=0.0),
        description=description,
        data_points=state.get("data_points", 0),
        required_data_points=config.enhanced_analysis.min_sample_size,
    )
    return {"report": report}


def insufficient_report(state: InsightState) -> InsightReport:
    need = _config(state).enhanced_analysis.min_sample_size
    have = state.get("data_points", 0)
    return InsightReport(
        status=ResultStatus.INSUFFICIENT_DATA,
        description=f"Need at least {need} emotion or sensory observations for forecasts (have {have})",
        data_points=have,
        required_data_points=need,
    )
