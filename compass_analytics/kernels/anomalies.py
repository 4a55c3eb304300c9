"""Anomaly kernel — deviations from the subject's own baseline.

Three detectors share one threshold,
``enhanced_analysis.anomaly_threshold / alert_sensitivity.anomaly_multiplier``,
expressed in standard deviations:

    - emotion intensity against the preceding ``long_term_days`` of emotions
    - daily sensory volume against the other days in the window
    - noise readings spiking above the window's mean

Standard deviations are floored so a perfectly flat baseline does not turn
every small change into an infinite z-score.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import ObservationKind, ResultStatus, Severity
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import AnomalyFinding, AnomalyReport
from compass_analytics.kernels.stats import clamp01, mean, pstdev
from compass_analytics.kernels.window import reference_time, within_days

STD_FLOOR = 0.5
COUNT_STD_FLOOR = 1.0


def severity_for(z: float, threshold: float) -> Severity:
    if z >= 2.0 * threshold:
        return Severity.HIGH
    if z >= 1.5 * threshold:
        return Severity.MEDIUM
    return Severity.LOW


def _recommendations(kind: ObservationKind, severity: Severity) -> tuple[str, ...]:
    if kind is ObservationKind.EMOTION:
        recs = ["Review what happened around this observation", "Check for new or unusual triggers"]
    elif kind is ObservationKind.SENSORY:
        recs = ["Compare the day's schedule against a typical day", "Review sensory supports in place"]
    else:
        recs = ["Identify the source of the noise spike", "Offer ear defenders or a quiet space"]
    if severity is Severity.HIGH:
        recs.append("Share with the support team for follow-up")
    return tuple(recs)


def detect_anomalies(
    batch: ObservationBatch,
    config: AnalysisConfiguration,
    *,
    as_of: Optional[datetime] = None,
) -> AnomalyReport:
    ea = config.enhanced_analysis
    tw = config.time_windows
    threshold = ea.anomaly_threshold / config.alert_sensitivity.anomaly_multiplier
    reference = reference_time(batch, as_of)

    history = batch.with_observations(within_days(batch.observations, tw.long_term_days, reference))
    if len(history) < ea.min_sample_size:
        return AnomalyReport(
            status=ResultStatus.INSUFFICIENT_DATA,
            description=(
                f"Need at least {ea.min_sample_size} observations to establish a baseline "
                f"(have {len(history)})"
            ),
            data_points=len(history),
            required_data_points=ea.min_sample_size,
        )

    findings: list[AnomalyFinding] = []
    findings.extend(_emotion_anomalies(history, config, threshold, reference))
    findings.extend(_sensory_anomalies(history, config, threshold))
    findings.extend(_noise_anomalies(history, config, threshold))
    findings.sort(key=lambda f: (f.timestamp, f.observation_kind.value), reverse=True)

    if findings:
        description = f"{len(findings)} anomal{'y' if len(findings) == 1 else 'ies'} detected"
    else:
        description = "No observations deviate from the baseline"
    return AnomalyReport(
        findings=tuple(findings),
        confidence=clamp01(len(history) / 30),
        description=description,
        data_points=len(history),
        required_data_points=ea.min_sample_size,
    )


def _emotion_anomalies(
    history: ObservationBatch,
    config: AnalysisConfiguration,
    threshold: float,
    reference: datetime,
) -> list[AnomalyFinding]:
    emotions = sorted(history.emotions, key=lambda e: e.timestamp)
    recent = within_days(emotions, config.time_windows.default_analysis_days, reference)
    baseline_span = timedelta(days=config.time_windows.long_term_days)
    found: list[AnomalyFinding] = []
    for emotion in recent:
        baseline = [
            e.intensity for e in emotions
            if emotion.timestamp - baseline_span <= e.timestamp < emotion.timestamp
        ]
        if len(baseline) < config.enhanced_analysis.min_sample_size:
            continue
        z = abs(emotion.intensity - mean(baseline)) / max(pstdev(baseline), STD_FLOOR)
        if z <= threshold:
            continue
        severity = severity_for(z, threshold)
        found.append(AnomalyFinding(
            timestamp=emotion.timestamp,
            observation_kind=ObservationKind.EMOTION,
            severity=severity,
            deviation_score=round(z, 4),
            description=(
                f"Unusual {emotion.category} intensity detected ({emotion.intensity}/5, "
                f"baseline {mean(baseline):.1f})"
            ),
            observation_id=emotion.observation_id,
            recommendations=_recommendations(ObservationKind.EMOTION, severity),
        ))
    return found


def _sensory_anomalies(
    history: ObservationBatch,
    config: AnalysisConfiguration,
    threshold: float,
) -> list[AnomalyFinding]:
    daily: dict = {}
    for s in history.sensory:
        day = s.timestamp.date()
        daily[day] = daily.get(day, 0) + 1
    if len(daily) < config.enhanced_analysis.min_sample_size:
        return []

    counts = list(daily.values())
    centre = mean(counts)
    spread = max(pstdev(counts), COUNT_STD_FLOOR)
    found: list[AnomalyFinding] = []
    for day in sorted(daily):
        z = abs(daily[day] - centre) / spread
        if z <= threshold:
            continue
        severity = severity_for(z, threshold)
        found.append(AnomalyFinding(
            timestamp=datetime.combine(day, time.min, tzinfo=timezone.utc),
            observation_kind=ObservationKind.SENSORY,
            severity=severity,
            deviation_score=round(z, 4),
            description=f"Unusual sensory activity level detected ({daily[day]} inputs, typical {centre:.1f})",
            recommendations=_recommendations(ObservationKind.SENSORY, severity),
        ))
    return found


def _noise_anomalies(
    history: ObservationBatch,
    config: AnalysisConfiguration,
    threshold: float,
) -> list[AnomalyFinding]:
    readings = [e for e in history.environmental if e.noise_level is not None]
    if len(readings) < config.enhanced_analysis.min_sample_size:
        return []

    levels = [e.noise_level for e in readings]
    centre = mean(levels)
    spread = max(pstdev(levels), STD_FLOOR)
    found: list[AnomalyFinding] = []
    for reading in readings:
        if reading.noise_level <= centre:
            continue
        z = (reading.noise_level - centre) / spread
        if z <= threshold:
            continue
        severity = severity_for(z, threshold)
        found.append(AnomalyFinding(
            timestamp=reading.timestamp,
            observation_kind=ObservationKind.ENVIRONMENTAL,
            severity=severity,
            deviation_score=round(z, 4),
            description=f"Noise spike detected ({reading.noise_level:.1f}/10, typical {centre:.1f})",
            observation_id=reading.observation_id,
            recommendations=_recommendations(ObservationKind.ENVIRONMENTAL, severity),
        ))
    return found
