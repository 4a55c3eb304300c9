"""Analysis results — the discriminated union produced by the kernels.

Every report carries a ``status``.  ``insufficient_data`` is a first-class
outcome with the same shape as a populated report (empty finding lists), so
consumers render "no data" without special-casing absence.

Results are frozen.  The cache hands out the same instance to every caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from compass_analytics.domain.enums import (
    AlertType,
    InsightType,
    ObservationKind,
    ResultStatus,
    Severity,
    Significance,
    TrendDirection,
)


class _ReportBase(BaseModel):
    status: ResultStatus = ResultStatus.OK
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    description: str = ""
    data_points: int = Field(default=0, ge=0)
    required_data_points: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @property
    def has_sufficient_data(self) -> bool:
        return self.status is ResultStatus.OK


# ── Patterns ─────────────────────────────────────────────────────────────────


class PatternFinding(BaseModel):
    pattern: str
    observation_kind: ObservationKind
    confidence: float = Field(..., ge=0.0, le=1.0)
    frequency: int = Field(..., ge=0)
    description: str
    recommendations: tuple[str, ...] = ()
    data_points: int = Field(..., ge=0)
    timeframe_days: int = Field(..., ge=0)

    model_config = {"frozen": True}


class PatternReport(_ReportBase):
    kind: Literal["patterns"] = "patterns"
    observation_kind: ObservationKind
    findings: tuple[PatternFinding, ...] = ()


# ── Correlations ─────────────────────────────────────────────────────────────


class CorrelationFinding(BaseModel):
    factor_x: str
    factor_y: str
    coefficient: float = Field(..., ge=-1.0, le=1.0)
    p_value: float = Field(..., ge=0.0, le=1.0)
    sample_size: int = Field(..., ge=0)
    significance: Significance
    description: str
    recommendations: tuple[str, ...] = ()

    model_config = {"frozen": True}


class CorrelationReport(_ReportBase):
    kind: Literal["correlations"] = "correlations"
    findings: tuple[CorrelationFinding, ...] = ()
    factors: tuple[str, ...] = ()
    matrix: tuple[tuple[Optional[float], ...], ...] = ()

    def coefficient(self, factor_x: str, factor_y: str) -> Optional[float]:
        """Look up a matrix cell by factor names."""
        try:
            i = self.factors.index(factor_x)
            j = self.factors.index(factor_y)
        except ValueError:
            return None
        return self.matrix[i][j]


# ── Anomalies ────────────────────────────────────────────────────────────────


class AnomalyFinding(BaseModel):
    timestamp: datetime
    observation_kind: ObservationKind
    severity: Severity
    deviation_score: float
    description: str
    observation_id: Optional[str] = None
    recommendations: tuple[str, ...] = ()

    model_config = {"frozen": True}


class AnomalyReport(_ReportBase):
    kind: Literal["anomalies"] = "anomalies"
    findings: tuple[AnomalyFinding, ...] = ()


# ── Predictive insights ──────────────────────────────────────────────────────


class Forecast(BaseModel):
    value: float
    direction: TrendDirection
    accuracy: float = Field(..., ge=0.0, le=1.0)

    model_config = {"frozen": True}


class PredictiveInsight(BaseModel):
    insight_type: InsightType
    title: str
    description: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    timeframe: str
    forecast: Optional[Forecast] = None
    recommendations: tuple[str, ...] = ()
    severity: Optional[Severity] = None

    model_config = {"frozen": True}


class InsightReport(_ReportBase):
    kind: Literal["predictions"] = "predictions"
    insights: tuple[PredictiveInsight, ...] = ()


# ── Trigger alerts ───────────────────────────────────────────────────────────


class TriggerAlert(BaseModel):
    alert_type: AlertType
    severity: Severity
    title: str
    description: str
    recommendations: tuple[str, ...] = ()
    data_points: int = Field(..., ge=0)

    model_config = {"frozen": True}


class AlertReport(_ReportBase):
    kind: Literal["alerts"] = "alerts"
    alerts: tuple[TriggerAlert, ...] = ()
    reference_time: Optional[datetime] = None


# ── Chart stages ─────────────────────────────────────────────────────────────


class ChartSeries(_ReportBase):
    """Rows for one progressive chart stage (distribution, grouped, trend)."""

    kind: Literal["chart"] = "chart"
    chart: str
    rows: tuple[dict[str, Any], ...] = ()


AnalysisResult = Annotated[
    Union[PatternReport, CorrelationReport, AnomalyReport, InsightReport, AlertReport, ChartSeries],
    Field(discriminator="kind"),
]

analysis_result_adapter: TypeAdapter[AnalysisResult] = TypeAdapter(AnalysisResult)
