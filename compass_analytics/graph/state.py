"""InsightState — the sole state object the predictive-insight nodes share.

Every node receives the full state and returns a partial update.  Nodes
never touch the cache, the store or the clock; the reference time is seeded
into the state by the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypedDict


class InsightState(TypedDict, total=False):
    """LangGraph state for the predictive-insight pipeline.

    Fields:
        batch: The ObservationBatch being analysed (read-only).
        config: The AnalysisConfiguration snapshot (read-only).
        reference: Time the forecast windows are measured back from.
        data_points: Emotion plus sensory observations inside the window.
        sufficient: Whether either series meets ``min_sample_size``.
        insights: PredictiveInsight values accumulated by the nodes.
        report: Final InsightReport written by compose_insights.
    """

    batch: Any
    config: Any
    reference: datetime | None
    data_points: int
    sufficient: bool
    insights: list[Any]
    report: Any
