"""Chart transforms used by the progressive scheduler, cheapest first.

    1. emotion_distribution — count per emotion category
    2. sensory_responses    — per-modality counts split by response
    3. emotion_trends       — per-day summed intensity per category

Rows are plain dicts so they serialise straight into chart payloads.
Charts report ``insufficient_data`` only for an empty input series.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import ResultStatus, SensoryResponse
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import ChartSeries


def _series(chart: str, rows: list[dict], data_points: int, description: str) -> ChartSeries:
    return ChartSeries(
        chart=chart,
        rows=tuple(rows),
        status=ResultStatus.OK if data_points else ResultStatus.INSUFFICIENT_DATA,
        confidence=1.0 if data_points else 0.0,
        description=description,
        data_points=data_points,
        required_data_points=1,
    )


def emotion_distribution(
    batch: ObservationBatch,
    config: Optional[AnalysisConfiguration] = None,
) -> ChartSeries:
    counts = Counter(e.category for e in batch.emotions)
    rows = [{"name": name, "value": value} for name, value in sorted(counts.items())]
    return _series(
        "emotion_distribution",
        rows,
        len(batch.emotions),
        f"{len(counts)} emotion categories across {len(batch.emotions)} observations",
    )


def sensory_responses(
    batch: ObservationBatch,
    config: Optional[AnalysisConfiguration] = None,
) -> ChartSeries:
    grouped: dict[str, dict] = {}
    for s in batch.sensory:
        row = grouped.setdefault(
            s.modality,
            {"type": s.modality, "total": 0, **{r.value: 0 for r in SensoryResponse}},
        )
        row[s.response.value] += 1
        row["total"] += 1
    rows = [grouped[m] for m in sorted(grouped)]
    return _series(
        "sensory_responses",
        rows,
        len(batch.sensory),
        f"{len(rows)} sensory modalities across {len(batch.sensory)} observations",
    )


def emotion_trends(
    batch: ObservationBatch,
    config: Optional[AnalysisConfiguration] = None,
) -> ChartSeries:
    categories = sorted({e.category for e in batch.emotions})
    by_day: dict[str, dict] = {}
    for e in batch.emotions:
        day = e.timestamp.date().isoformat()
        row = by_day.setdefault(day, {"date": day, "count": 0, **{c: 0 for c in categories}})
        row[e.category] += e.intensity
        row["count"] += 1
    rows = [by_day[d] for d in sorted(by_day)]
    return _series(
        "emotion_trends",
        rows,
        len(batch.emotions),
        f"{len(rows)} days of emotion data",
    )
