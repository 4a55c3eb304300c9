"""Pattern kernels over a single observation kind.

Thresholds are scaled by the alert-sensitivity multipliers: a multiplier
above 1.0 lowers the effective threshold (more sensitive), below 1.0 raises
it.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime
from typing import Optional

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import (
    NEGATIVE_EMOTIONS,
    ObservationKind,
    ResultStatus,
    SensoryResponse,
    TrendDirection,
)
from compass_analytics.domain.observation import (
    EmotionObservation,
    ObservationBatch,
    SensoryObservation,
)
from compass_analytics.domain.results import PatternFinding, PatternReport
from compass_analytics.kernels.stats import clamp01, direction_of, linear_regression
from compass_analytics.kernels.window import reference_time, within_days

# Regressions with a weaker fit than this are not reported as drift.
_MIN_DRIFT_FIT = 0.3

_EMOTION_RECOMMENDATIONS: dict[str, tuple[str, ...]] = {
    "anxious": (
        "Introduce mindfulness and breathing exercises",
        "Create predictable routines and schedules",
        "Provide advance notice of changes",
    ),
    "frustrated": (
        "Break tasks into smaller, manageable steps",
        "Offer choice and control opportunities",
        "Teach problem-solving strategies",
    ),
    "happy": (
        "Continue activities that promote positive engagement",
        "Document successful strategies for future use",
        "Build on current strengths",
    ),
    "calm": (
        "Maintain current supportive environment",
        "Use as a baseline for comparison",
        "Gradually introduce new challenges",
    ),
}
_DEFAULT_RECOMMENDATIONS = (
    "Monitor patterns and adjust strategies as needed",
    "Consult with support team for specialized approaches",
)


def _insufficient(kind: ObservationKind, have: int, need: int) -> PatternReport:
    return PatternReport(
        observation_kind=kind,
        status=ResultStatus.INSUFFICIENT_DATA,
        description=f"Need at least {need} {kind.value} observations to detect patterns (have {have})",
        data_points=have,
        required_data_points=need,
    )


def _report(kind: ObservationKind, findings: list[PatternFinding], data_points: int, need: int) -> PatternReport:
    if findings:
        description = f"{len(findings)} {kind.value} pattern(s) detected across {data_points} observations"
    else:
        description = f"No notable {kind.value} patterns across {data_points} observations"
    return PatternReport(
        observation_kind=kind,
        findings=tuple(findings),
        confidence=max((f.confidence for f in findings), default=0.0),
        description=description,
        data_points=data_points,
        required_data_points=need,
    )


# ── Emotion ──────────────────────────────────────────────────────────────────


def emotion_patterns(
    batch: ObservationBatch,
    config: AnalysisConfiguration,
    *,
    as_of: Optional[datetime] = None,
    timeframe_days: Optional[int] = None,
) -> PatternReport:
    pa = config.pattern_analysis
    sens = config.alert_sensitivity
    days = timeframe_days or config.time_windows.default_analysis_days

    recent: list[EmotionObservation] = within_days(
        batch.emotions, days, reference_time(batch, as_of)
    )
    n = len(recent)
    if n < pa.min_data_points:
        return _insufficient(ObservationKind.EMOTION, n, pa.min_data_points)

    intensity_threshold = pa.high_intensity_threshold / sens.emotion_intensity_multiplier
    frequency_threshold = pa.concern_frequency_threshold / sens.frequency_multiplier

    def finding(pattern: str, share: float, count: int, description: str, recs) -> PatternFinding:
        return PatternFinding(
            pattern=pattern,
            observation_kind=ObservationKind.EMOTION,
            confidence=clamp01(share),
            frequency=count,
            description=description,
            recommendations=tuple(recs),
            data_points=n,
            timeframe_days=days,
        )

    findings: list[PatternFinding] = []

    negative = [e for e in recent if e.category in NEGATIVE_EMOTIONS]
    high_negative = [e for e in negative if e.intensity >= intensity_threshold]
    moderate_negative = [e for e in negative if e.intensity >= 3]

    if high_negative and len(high_negative) / n > frequency_threshold:
        share = len(high_negative) / n
        findings.append(finding(
            "high-intensity-negative",
            share,
            len(high_negative),
            f"High-intensity negative emotions detected in {round(share * 100)}% of recent observations",
            (
                "Consider implementing calming strategies before intense activities",
                "Monitor environmental triggers that may contribute to stress",
                "Discuss coping mechanisms with student",
            ),
        ))

    counts = Counter(e.category for e in recent)
    dominant, dominant_count = min(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    if dominant_count / n > pa.emotion_consistency_threshold:
        findings.append(finding(
            "consistent-emotion",
            dominant_count / n,
            dominant_count,
            f"Consistent {dominant} emotion pattern detected",
            _EMOTION_RECOMMENDATIONS.get(dominant, _DEFAULT_RECOMMENDATIONS),
        ))

    if not high_negative and len(moderate_negative) / n > pa.moderate_negative_threshold:
        share = len(moderate_negative) / n
        findings.append(finding(
            "moderate-negative",
            share,
            len(moderate_negative),
            f"Moderate negative emotions detected in {round(share * 100)}% of recent observations",
            (
                "Monitor for potential stress escalation",
                "Implement preventive calming strategies",
                "Consider environmental adjustments",
            ),
        ))

    trigger_counts = Counter(t for e in recent for t in set(e.triggers))
    min_trigger_count = max(2, math.ceil(n * frequency_threshold))
    for trigger, count in sorted(trigger_counts.items(), key=lambda kv: (-kv[1], kv[0])):
        if count < min_trigger_count:
            break
        findings.append(finding(
            "recurring-trigger",
            count / n,
            count,
            f"Trigger '{trigger}' recurs in {count} of {n} emotion observations",
            (
                f"Plan supports ahead of situations involving {trigger}",
                "Track whether adjustments reduce the trigger's frequency",
            ),
        ))

    ordered = sorted(recent, key=lambda e: e.timestamp)
    fit = linear_regression([float(e.intensity) for e in ordered])
    if fit is not None and fit.r_squared >= _MIN_DRIFT_FIT:
        direction = direction_of(fit.slope, config.enhanced_analysis.trend_threshold)
        if direction is not TrendDirection.STABLE:
            findings.append(finding(
                "intensity-drift",
                fit.r_squared,
                n,
                f"Emotion intensity is {direction.value} by {abs(fit.slope):.2f} per observation",
                (
                    "Review recent changes in routine or environment",
                    "Compare against upcoming schedule changes",
                ) if direction is TrendDirection.INCREASING else (
                    "Document strategies in use during this period",
                ),
            ))

    return _report(ObservationKind.EMOTION, findings, n, pa.min_data_points)


# ── Sensory ──────────────────────────────────────────────────────────────────


def sensory_patterns(
    batch: ObservationBatch,
    config: AnalysisConfiguration,
    *,
    as_of: Optional[datetime] = None,
    timeframe_days: Optional[int] = None,
) -> PatternReport:
    pa = config.pattern_analysis
    days = timeframe_days or config.time_windows.default_analysis_days

    recent: list[SensoryObservation] = within_days(
        batch.sensory, days, reference_time(batch, as_of)
    )
    n = len(recent)
    if n < pa.min_data_points:
        return _insufficient(ObservationKind.SENSORY, n, pa.min_data_points)

    frequency_threshold = pa.concern_frequency_threshold / config.alert_sensitivity.frequency_multiplier
    seeking = sum(1 for s in recent if s.response is SensoryResponse.SEEKING)
    avoiding = sum(1 for s in recent if s.response is SensoryResponse.AVOIDING)

    findings: list[PatternFinding] = []

    if seeking > avoiding * 2:
        findings.append(PatternFinding(
            pattern="sensory-seeking",
            observation_kind=ObservationKind.SENSORY,
            confidence=seeking / n,
            frequency=seeking,
            description="Strong sensory-seeking pattern identified",
            recommendations=(
                "Provide scheduled sensory breaks",
                "Offer fidget tools and movement opportunities",
                "Consider sensory-rich learning activities",
            ),
            data_points=n,
            timeframe_days=days,
        ))
    elif avoiding > seeking * 2:
        findings.append(PatternFinding(
            pattern="sensory-avoiding",
            observation_kind=ObservationKind.SENSORY,
            confidence=avoiding / n,
            frequency=avoiding,
            description="Strong sensory-avoiding pattern identified",
            recommendations=(
                "Provide quiet, low-stimulation spaces",
                "Use noise-canceling headphones when appropriate",
                "Gradually introduce sensory experiences",
            ),
            data_points=n,
            timeframe_days=days,
        ))

    by_modality: dict[str, list[SensoryObservation]] = {}
    for s in recent:
        by_modality.setdefault(s.modality, []).append(s)
    for modality in sorted(by_modality):
        group = by_modality[modality]
        avoided = sum(1 for s in group if s.response is SensoryResponse.AVOIDING)
        if len(group) < 2 or avoided / len(group) <= max(frequency_threshold, 0.5):
            continue
        findings.append(PatternFinding(
            pattern="modality-avoidance",
            observation_kind=ObservationKind.SENSORY,
            confidence=avoided / len(group),
            frequency=avoided,
            description=f"{modality.capitalize()} input is avoided in {avoided} of {len(group)} observations",
            recommendations=(
                f"Reduce unexpected {modality} input where possible",
                f"Offer a predictable way to opt out of {modality} activities",
            ),
            data_points=len(group),
            timeframe_days=days,
        ))

    return _report(ObservationKind.SENSORY, findings, n, pa.min_data_points)
