"""Kernel registry — task kind → kernel, result category and config sections.

The declared sections are the only part of the configuration folded into a
kernel's cache key.  A kernel that reads a section it does not declare would
serve stale results after an update, so keep these lists in step with the
kernel bodies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from compass_analytics.domain.enums import ResultKind, TaskKind
from compass_analytics.domain.results import (
    AlertReport,
    AnomalyReport,
    ChartSeries,
    CorrelationReport,
    InsightReport,
    PatternReport,
)
from compass_analytics.kernels.alerts import generate_trigger_alerts
from compass_analytics.kernels.anomalies import detect_anomalies
from compass_analytics.kernels.charts import emotion_distribution, emotion_trends, sensory_responses
from compass_analytics.kernels.correlation import environmental_correlations
from compass_analytics.kernels.patterns import emotion_patterns, sensory_patterns
from compass_analytics.kernels.predictive import generate_predictive_insights


@dataclass(frozen=True)
class KernelSpec:
    func: Callable
    category: ResultKind
    config_sections: tuple[str, ...]
    result_type: type


KERNELS: dict[TaskKind, KernelSpec] = {
    TaskKind.EMOTION_PATTERNS: KernelSpec(
        func=emotion_patterns,
        category=ResultKind.PATTERNS,
        config_sections=("pattern_analysis", "enhanced_analysis", "time_windows", "alert_sensitivity"),
        result_type=PatternReport,
    ),
    TaskKind.SENSORY_PATTERNS: KernelSpec(
        func=sensory_patterns,
        category=ResultKind.PATTERNS,
        config_sections=("pattern_analysis", "time_windows", "alert_sensitivity"),
        result_type=PatternReport,
    ),
    TaskKind.ENVIRONMENTAL_CORRELATIONS: KernelSpec(
        func=environmental_correlations,
        category=ResultKind.CORRELATIONS,
        config_sections=("pattern_analysis", "time_windows", "alert_sensitivity"),
        result_type=CorrelationReport,
    ),
    TaskKind.ANOMALIES: KernelSpec(
        func=detect_anomalies,
        category=ResultKind.ANOMALIES,
        config_sections=("enhanced_analysis", "time_windows", "alert_sensitivity"),
        result_type=AnomalyReport,
    ),
    TaskKind.PREDICTIVE_INSIGHTS: KernelSpec(
        func=generate_predictive_insights,
        category=ResultKind.PREDICTIONS,
        config_sections=("pattern_analysis", "enhanced_analysis", "time_windows", "alert_sensitivity"),
        result_type=InsightReport,
    ),
    TaskKind.TRIGGER_ALERTS: KernelSpec(
        func=generate_trigger_alerts,
        category=ResultKind.ALERTS,
        config_sections=("pattern_analysis", "time_windows", "alert_sensitivity"),
        result_type=AlertReport,
    ),
    TaskKind.EMOTION_DISTRIBUTION: KernelSpec(
        func=emotion_distribution,
        category=ResultKind.CHART,
        config_sections=(),
        result_type=ChartSeries,
    ),
    TaskKind.SENSORY_RESPONSES: KernelSpec(
        func=sensory_responses,
        category=ResultKind.CHART,
        config_sections=(),
        result_type=ChartSeries,
    ),
    TaskKind.EMOTION_TRENDS: KernelSpec(
        func=emotion_trends,
        category=ResultKind.CHART,
        config_sections=(),
        result_type=ChartSeries,
    ),
}


def kernel_for(task_kind: TaskKind) -> KernelSpec:
    try:
        return KERNELS[task_kind]
    except KeyError:
        raise ValueError(f"No kernel registered for task kind {task_kind!r}") from None
