"""Filter criteria and the pure, order-preserving filter over a batch.

Date ranges are half-open: ``[start, end_exclusive)``.  An observation stamped
exactly at ``end_exclusive`` is excluded.  This is a hard boundary rule, not
an approximation, so callers converting "last day inclusive" ranges must go
through ``DateRange.for_days``.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from compass_analytics.domain.enums import SensoryResponse
from compass_analytics.domain.observation import (
    EmotionObservation,
    EnvironmentalObservation,
    Observation,
    ObservationBatch,
    SensoryObservation,
)
from compass_analytics.foundation.clock import ensure_utc


class DateRange(BaseModel):
    """Half-open time interval; either bound may be open-ended."""

    start: Optional[datetime] = None
    end_exclusive: Optional[datetime] = None

    model_config = {"frozen": True}

    @field_validator("start", "end_exclusive")
    @classmethod
    def bounds_must_be_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else v

    @model_validator(mode="after")
    def end_after_start(self) -> DateRange:
        if self.start is not None and self.end_exclusive is not None:
            if self.end_exclusive <= self.start:
                raise ValueError("end_exclusive must be later than start")
        return self

    @classmethod
    def for_days(cls, first_day: date, last_day: date) -> DateRange:
        """Cover whole UTC days ``first_day`` through ``last_day`` inclusive."""
        start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)
        end = datetime.combine(last_day + timedelta(days=1), time.min, tzinfo=timezone.utc)
        return cls(start=start, end_exclusive=end)

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end_exclusive is not None and ts >= self.end_exclusive:
            return False
        return True


class FilterCriteria(BaseModel):
    """Inclusion rules applied to a batch.

    Empty allow-sets mean "no restriction".  Ranges are inclusive on both
    ends except the date range, which is half-open.
    """

    date_range: DateRange = Field(default_factory=DateRange)

    intensity_range: tuple[int, int] = (1, 5)
    categories_allow: frozenset[str] = frozenset()
    categories_deny: frozenset[str] = frozenset()
    triggers_include: frozenset[str] = frozenset()
    triggers_exclude: frozenset[str] = frozenset()

    sensory_modalities: frozenset[str] = frozenset()
    sensory_responses: frozenset[SensoryResponse] = frozenset()

    noise_range: Optional[tuple[float, float]] = None
    temperature_range: Optional[tuple[float, float]] = None
    lighting_allow: frozenset[str] = frozenset()
    weather_allow: frozenset[str] = frozenset()
    activities_allow: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @field_validator(
        "categories_allow",
        "categories_deny",
        "triggers_include",
        "triggers_exclude",
        "sensory_modalities",
        "lighting_allow",
        "weather_allow",
        "activities_allow",
    )
    @classmethod
    def normalise_labels(cls, v: frozenset[str]) -> frozenset[str]:
        return frozenset(s.strip().lower() for s in v)

    @field_validator("intensity_range", "noise_range", "temperature_range")
    @classmethod
    def range_must_be_ordered(cls, v):
        if v is not None and v[0] > v[1]:
            raise ValueError(f"range lower bound {v[0]} exceeds upper bound {v[1]}")
        return v


# ── Filtering ────────────────────────────────────────────────────────────────


def _emotion_passes(obs: EmotionObservation, c: FilterCriteria) -> bool:
    low, high = c.intensity_range
    if not low <= obs.intensity <= high:
        return False
    if c.categories_allow and obs.category not in c.categories_allow:
        return False
    if obs.category in c.categories_deny:
        return False
    triggers = set(obs.triggers)
    if c.triggers_include and not triggers & c.triggers_include:
        return False
    if triggers & c.triggers_exclude:
        return False
    return True


def _sensory_passes(obs: SensoryObservation, c: FilterCriteria) -> bool:
    if c.sensory_modalities and obs.modality not in c.sensory_modalities:
        return False
    if c.sensory_responses and obs.response not in c.sensory_responses:
        return False
    if obs.intensity is not None:
        low, high = c.intensity_range
        if not low <= obs.intensity <= high:
            return False
    return True


def _environment_passes(obs: EnvironmentalObservation, c: FilterCriteria) -> bool:
    if c.noise_range is not None and obs.noise_level is not None:
        if not c.noise_range[0] <= obs.noise_level <= c.noise_range[1]:
            return False
    if c.temperature_range is not None and obs.temperature is not None:
        if not c.temperature_range[0] <= obs.temperature <= c.temperature_range[1]:
            return False
    if c.lighting_allow and obs.lighting and obs.lighting not in c.lighting_allow:
        return False
    if c.weather_allow and obs.weather and obs.weather not in c.weather_allow:
        return False
    if c.activities_allow and obs.activity and obs.activity not in c.activities_allow:
        return False
    return True


def matches(observation: Observation, criteria: FilterCriteria) -> bool:
    """Return True if *observation* satisfies every rule in *criteria*."""
    if not criteria.date_range.contains(observation.timestamp):
        return False
    if isinstance(observation, EmotionObservation):
        return _emotion_passes(observation, criteria)
    if isinstance(observation, SensoryObservation):
        return _sensory_passes(observation, criteria)
    return _environment_passes(observation, criteria)


def apply_filters(batch: ObservationBatch, criteria: FilterCriteria) -> ObservationBatch:
    """Pure, order-preserving filter.  Returns a new batch."""
    return batch.with_observations([o for o in batch.observations if matches(o, criteria)])
