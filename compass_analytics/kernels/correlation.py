"""Environmental correlation kernel.

Observations are grouped into sessions (explicit ``session_id``, else the UTC
day).  Each session yields one value per factor; factors with no data in a
session are skipped for that session, so every pairwise coefficient uses
only sessions where both factors were measured.

Significance combines magnitude (alert-sensitivity bands) with the Fisher-z
p-value, which depends on the paired sample size.
"""

from __future__ import annotations

import logging
from datetime import datetime
from itertools import combinations
from typing import Optional

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import POSITIVE_EMOTIONS, ResultStatus, SensoryResponse
from compass_analytics.domain.observation import (
    EmotionObservation,
    EnvironmentalObservation,
    ObservationBatch,
    SensoryObservation,
)
from compass_analytics.domain.results import CorrelationFinding, CorrelationReport
from compass_analytics.kernels.stats import fisher_p_value, mean, pearson, significance_tier
from compass_analytics.kernels.window import reference_time, within_days

logger = logging.getLogger(__name__)

FACTORS: tuple[str, ...] = (
    "emotion_intensity",
    "positive_emotion_ratio",
    "sensory_seeking_ratio",
    "noise_level",
    "temperature",
    "lighting_quality",
)

FACTOR_LABELS: dict[str, str] = {
    "emotion_intensity": "emotion intensity",
    "positive_emotion_ratio": "share of positive emotions",
    "sensory_seeking_ratio": "sensory seeking",
    "noise_level": "noise level",
    "temperature": "room temperature",
    "lighting_quality": "lighting quality",
}

LIGHTING_SCALE: dict[str, float] = {
    "dim": 1.0,
    "normal": 2.0,
    "fluorescent": 2.5,
    "bright": 3.0,
    "natural": 3.5,
}

_RECOMMENDATIONS: dict[tuple[str, str, bool], tuple[str, ...]] = {
    ("emotion_intensity", "noise_level", True): (
        "Provide noise-reducing supports during loud periods",
        "Schedule demanding tasks for quieter times",
    ),
    ("noise_level", "positive_emotion_ratio", False): (
        "Offer a quiet space when noise levels rise",
    ),
    ("emotion_intensity", "temperature", True): (
        "Monitor room temperature and offer cooling breaks",
    ),
    ("lighting_quality", "positive_emotion_ratio", True): (
        "Favour natural or well-lit spaces for learning activities",
    ),
}
_DEFAULT_RECOMMENDATIONS = (
    "Keep recording both factors to confirm the relationship",
)


def _session_factors(batch: ObservationBatch) -> list[dict[str, float]]:
    sessions: dict[str, list] = {}
    for obs in batch.observations:
        sessions.setdefault(obs.session_key, []).append(obs)

    rows: list[dict[str, float]] = []
    for key in sorted(sessions):
        group = sessions[key]
        emotions = [o for o in group if isinstance(o, EmotionObservation)]
        sensory = [o for o in group if isinstance(o, SensoryObservation)]
        env = [o for o in group if isinstance(o, EnvironmentalObservation)]

        row: dict[str, float] = {}
        if emotions:
            row["emotion_intensity"] = mean([e.intensity for e in emotions])
            row["positive_emotion_ratio"] = (
                sum(1 for e in emotions if e.category in POSITIVE_EMOTIONS) / len(emotions)
            )
        if sensory:
            row["sensory_seeking_ratio"] = (
                sum(1 for s in sensory if s.response is SensoryResponse.SEEKING) / len(sensory)
            )
        noise = [e.noise_level for e in env if e.noise_level is not None]
        if noise:
            row["noise_level"] = mean(noise)
        temps = [e.temperature for e in env if e.temperature is not None]
        if temps:
            row["temperature"] = mean(temps)
        lighting = [LIGHTING_SCALE[e.lighting] for e in env if e.lighting in LIGHTING_SCALE]
        if lighting:
            row["lighting_quality"] = mean(lighting)
        rows.append(row)
    return rows


def _paired(rows: list[dict[str, float]], x: str, y: str) -> tuple[list[float], list[float]]:
    xs: list[float] = []
    ys: list[float] = []
    for row in rows:
        if x in row and y in row:
            xs.append(row[x])
            ys.append(row[y])
    return xs, ys


def describe_pair(factor_x: str, factor_y: str, r: float, significance: str) -> str:
    """Natural-language summary templated from the two factor names."""
    x_label = FACTOR_LABELS.get(factor_x, factor_x.replace("_", " "))
    y_label = FACTOR_LABELS.get(factor_y, factor_y.replace("_", " "))
    relation = "higher" if r > 0 else "lower"
    return (
        f"Higher {x_label} is associated with {relation} {y_label} "
        f"(r={r:.2f}, {significance} significance)"
    )


def environmental_correlations(
    batch: ObservationBatch,
    config: AnalysisConfiguration,
    *,
    as_of: Optional[datetime] = None,
    timeframe_days: Optional[int] = None,
) -> CorrelationReport:
    pa = config.pattern_analysis
    days = timeframe_days or config.time_windows.default_analysis_days
    windowed = batch.with_observations(
        within_days(batch.observations, days, reference_time(batch, as_of))
    )

    rows = _session_factors(windowed)
    measured = sum(1 for row in rows if row.keys() & {"noise_level", "temperature", "lighting_quality"})
    if measured < pa.min_data_points:
        return CorrelationReport(
            status=ResultStatus.INSUFFICIENT_DATA,
            description=(
                f"Need environmental data from at least {pa.min_data_points} sessions "
                f"to compute correlations (have {measured})"
            ),
            data_points=measured,
            required_data_points=pa.min_data_points,
            factors=FACTORS,
        )

    matrix: list[list[Optional[float]]] = []
    for fx in FACTORS:
        line: list[Optional[float]] = []
        for fy in FACTORS:
            r = pearson(*_paired(rows, fx, fy))
            line.append(round(r, 6) if r is not None else None)
        matrix.append(line)

    findings: list[CorrelationFinding] = []
    for fx, fy in combinations(FACTORS, 2):
        xs, ys = _paired(rows, fx, fy)
        if len(xs) < pa.min_data_points:
            continue
        r = pearson(xs, ys)
        if r is None or abs(r) < pa.correlation_threshold:
            continue
        p_value = fisher_p_value(r, len(xs))
        tier = significance_tier(r, p_value, config.alert_sensitivity)
        findings.append(CorrelationFinding(
            factor_x=fx,
            factor_y=fy,
            coefficient=r,
            p_value=p_value,
            sample_size=len(xs),
            significance=tier,
            description=describe_pair(fx, fy, r, tier.value),
            recommendations=_RECOMMENDATIONS.get(
                (min(fx, fy), max(fx, fy), r > 0), _DEFAULT_RECOMMENDATIONS
            ),
        ))

    findings.sort(key=lambda f: (-abs(f.coefficient), f.factor_x, f.factor_y))
    logger.debug(
        "Correlations for %s: sessions=%d measured=%d findings=%d",
        batch.subject_id, len(rows), measured, len(findings),
    )

    if findings:
        description = f"{len(findings)} notable correlation(s) across {measured} sessions"
    else:
        description = f"No correlations above {pa.correlation_threshold:.2f} across {measured} sessions"
    return CorrelationReport(
        findings=tuple(findings),
        factors=FACTORS,
        matrix=tuple(tuple(line) for line in matrix),
        confidence=max((abs(f.coefficient) for f in findings), default=0.0),
        description=description,
        data_points=measured,
        required_data_points=pa.min_data_points,
    )
