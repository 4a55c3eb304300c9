"""Pydantic model for observation uploads on the HTTP boundary."""

from __future__ import annotations

from pydantic import BaseModel, Field

from compass_analytics.domain.observation import Observation


class ObservationUpload(BaseModel):
    """A batch of raw observations sent by a tracking client."""

    observations: list[Observation] = Field(..., min_length=1, max_length=5000)
