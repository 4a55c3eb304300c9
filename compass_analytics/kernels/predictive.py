"""Predictive-insight kernel — a thin runner over the insight graph.

The graph seeds nothing from the environment: the batch, the configuration
snapshot and the reference time all enter through the initial state, so the
kernel stays pure.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import InsightReport
from compass_analytics.graph.builder import build_insight_graph
from compass_analytics.graph.nodes import insufficient_report
from compass_analytics.graph.state import InsightState
from compass_analytics.kernels.window import reference_time

logger = logging.getLogger(__name__)


def generate_predictive_insights(
    batch: ObservationBatch,
    config: AnalysisConfiguration,
    *,
    as_of: Optional[datetime] = None,
) -> InsightReport:
    initial_state: InsightState = {
        "batch": batch,
        "config": config,
        "reference": reference_time(batch, as_of),
        "data_points": 0,
        "sufficient": False,
        "insights": [],
    }

    final_state = build_insight_graph().invoke(initial_state)

    report = final_state.get("report")
    if report is None:
        report = insufficient_report(final_state)
    logger.debug(
        "Insight graph for %s: status=%s insights=%d",
        batch.subject_id, report.status.value, len(report.insights),
    )
    return report
