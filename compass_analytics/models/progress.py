"""Pydantic model for progressive chart updates streamed to subscribers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from compass_analytics.domain.results import ChartSeries
from compass_analytics.foundation.clock import utc_now


class StageState(str, Enum):
    PENDING = "pending"
    STAGE1_DONE = "stage1_done"
    STAGE2_DONE = "stage2_done"
    STAGE3_DONE = "stage3_done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StageState.STAGE3_DONE, StageState.ERROR)


class ProgressUpdate(BaseModel):
    """One state transition of a progressive batch.

    ``partial_result`` carries the chart computed by the stage that just
    finished; it is None for the initial ``pending`` update and for errors.
    """

    batch_id: str
    generation: int = Field(..., ge=1)
    state: StageState
    stage: int = Field(..., ge=0, le=3)
    chart: Optional[str] = None
    partial_result: Optional[ChartSeries] = None
    error_message: Optional[str] = None
    emitted_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class ProgressSnapshot(BaseModel):
    """Point-in-time view of a progressive batch: state plus charts so far."""

    batch_id: str
    generation: int
    state: StageState
    charts: dict[str, ChartSeries] = Field(default_factory=dict)
    error_message: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def completed_stages(self) -> int:
        return len(self.charts)
