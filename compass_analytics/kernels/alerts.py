"""Trigger-alert kernel — actionable flags over the recent window.

Three alert rules, all measured over ``time_windows.recent_data_days``:

    concern      at least two high-intensity stress emotions
    improvement  at least three strong positive emotions among five or more
    pattern      a highly significant environmental correlation (|r| > 0.6)

The high-intensity threshold is scaled by
``alert_sensitivity.emotion_intensity_multiplier`` the same way the pattern
kernels scale it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import (
    POSITIVE_EMOTIONS,
    STRESS_EMOTIONS,
    AlertType,
    ResultStatus,
    Severity,
    Significance,
)
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import AlertReport, TriggerAlert
from compass_analytics.kernels.correlation import environmental_correlations
from compass_analytics.kernels.stats import clamp01
from compass_analytics.kernels.window import reference_time, within_days

logger = logging.getLogger(__name__)

MIN_STRESS_EVENTS = 2
MIN_POSITIVE_EVENTS = 3
MIN_RECENT_EMOTIONS = 5
POSITIVE_INTENSITY = 4
PATTERN_MIN_COEFFICIENT = 0.6

_STRESS_RECOMMENDATIONS = (
    "Schedule a check-in with the student",
    "Review current stressors and triggers",
    "Implement additional calming strategies",
    "Consider environmental modifications",
)
_PROGRESS_RECOMMENDATIONS = (
    "Continue current successful strategies",
    "Document what is working well",
    "Consider sharing success with student and family",
)


def generate_trigger_alerts(
    batch: ObservationBatch,
    config: AnalysisConfiguration,
    *,
    as_of: Optional[datetime] = None,
) -> AlertReport:
    days = config.time_windows.recent_data_days
    reference = reference_time(batch, as_of)
    recent = batch.with_observations(within_days(batch.observations, days, reference))

    if recent.is_empty:
        return AlertReport(
            status=ResultStatus.INSUFFICIENT_DATA,
            description=f"No observations in the last {days} days",
            required_data_points=1,
            reference_time=reference,
        )

    emotions = recent.emotions
    alerts: list[TriggerAlert] = []

    threshold = config.pattern_analysis.high_intensity_threshold / config.alert_sensitivity.emotion_intensity_multiplier
    stressed = [e for e in emotions if e.intensity >= threshold and e.category in STRESS_EMOTIONS]
    if len(stressed) >= MIN_STRESS_EVENTS:
        alerts.append(TriggerAlert(
            alert_type=AlertType.CONCERN,
            severity=Severity.HIGH,
            title="High Stress Pattern Detected",
            description=f"{len(stressed)} high-intensity stress responses recorded in the past {days} days",
            recommendations=_STRESS_RECOMMENDATIONS,
            data_points=len(emotions),
        ))

    positive = [e for e in emotions if e.category in POSITIVE_EMOTIONS and e.intensity >= POSITIVE_INTENSITY]
    if len(positive) >= MIN_POSITIVE_EVENTS and len(emotions) >= MIN_RECENT_EMOTIONS:
        share = round(100 * len(positive) / len(emotions))
        alerts.append(TriggerAlert(
            alert_type=AlertType.IMPROVEMENT,
            severity=Severity.LOW,
            title="Positive Progress Noted",
            description=f"Strong positive emotional responses observed in {share}% of recent observations",
            recommendations=_PROGRESS_RECOMMENDATIONS,
            data_points=len(emotions),
        ))

    correlations = environmental_correlations(recent, config, as_of=reference, timeframe_days=days)
    for finding in correlations.findings:
        if finding.significance is Significance.HIGH and abs(finding.coefficient) > PATTERN_MIN_COEFFICIENT:
            alerts.append(TriggerAlert(
                alert_type=AlertType.PATTERN,
                severity=Severity.MEDIUM,
                title="Environmental Pattern Identified",
                description=finding.description,
                recommendations=finding.recommendations,
                data_points=finding.sample_size,
            ))

    logger.debug("Trigger alerts for %s: recent=%d alerts=%d", batch.subject_id, len(recent), len(alerts))
    return AlertReport(
        alerts=tuple(alerts),
        confidence=clamp01(len(emotions) / (2 * MIN_RECENT_EMOTIONS)),
        description=(
            f"{len(alerts)} alert(s) from the last {days} days"
            if alerts else f"No alerts from the last {days} days"
        ),
        data_points=len(recent),
        required_data_points=1,
        reference_time=reference,
    )
