"""Wire models for the background dispatch protocol.

Both execution paths exchange these as JSON text, so the inline path and the
worker path see byte-identical inputs and produce value-identical results.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import TaskKind
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import AnalysisResult


class TaskRequest(BaseModel):
    """A serialisable description of one kernel invocation."""

    task_kind: TaskKind
    input_fingerprint: str = Field(..., min_length=1)
    observations: ObservationBatch
    configuration: AnalysisConfiguration
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class TaskResponse(BaseModel):
    """Either a result or an error message, never both."""

    task_kind: TaskKind
    result: Optional[AnalysisResult] = None
    error_message: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def exactly_one_outcome(self) -> TaskResponse:
        if (self.result is None) == (self.error_message is None):
            raise ValueError("TaskResponse must carry exactly one of result or error_message")
        return self

    @property
    def ok(self) -> bool:
        return self.error_message is None
