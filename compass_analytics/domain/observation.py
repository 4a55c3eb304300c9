"""Observation models — the raw history the analytics core reasons over.

An Observation is an immutable, timestamped record about one subject.  It is
one of three kinds (emotional state, sensory event, environmental snapshot),
discriminated by the ``kind`` field so a serialized batch round-trips through
the background worker without losing type information.

An ObservationBatch is an ordered, immutable collection for one subject.
Order matters for display only; every analysis treats it as a multiset.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from compass_analytics.domain.enums import (
    EscalationPattern,
    ObservationKind,
    SensoryResponse,
)
from compass_analytics.foundation.clock import ensure_utc
from compass_analytics.foundation.identifiers import new_id


class _ObservationBase(BaseModel):
    observation_id: str = Field(default_factory=new_id)
    subject_id: str = Field(..., min_length=1, max_length=128)
    timestamp: datetime = Field(..., description="When the observation was made (UTC)")
    session_id: Optional[str] = Field(
        default=None,
        description="Tracking session this observation was recorded in, if any",
    )

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def timestamp_must_be_aware(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def session_key(self) -> str:
        """Grouping key used to pair factors recorded together.

        Falls back to the UTC calendar day when no session id was captured.
        """
        return self.session_id or self.timestamp.date().isoformat()


class EmotionObservation(_ObservationBase):
    kind: Literal["emotion"] = "emotion"
    category: str = Field(..., min_length=1, max_length=64)
    intensity: int = Field(..., ge=1, le=5)
    triggers: tuple[str, ...] = ()
    duration_minutes: Optional[float] = Field(default=None, ge=0.0)
    escalation: Optional[EscalationPattern] = None

    @field_validator("category")
    @classmethod
    def normalise_category(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("triggers")
    @classmethod
    def normalise_triggers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(t.strip().lower() for t in v if t.strip())


class SensoryObservation(_ObservationBase):
    kind: Literal["sensory"] = "sensory"
    modality: str = Field(..., min_length=1, max_length=64)
    response: SensoryResponse
    intensity: Optional[int] = Field(default=None, ge=1, le=5)

    @field_validator("modality")
    @classmethod
    def normalise_modality(cls, v: str) -> str:
        return v.strip().lower()


class EnvironmentalObservation(_ObservationBase):
    kind: Literal["environmental"] = "environmental"
    noise_level: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    temperature: Optional[float] = Field(default=None, ge=-30.0, le=60.0)
    lighting: Optional[str] = None
    weather: Optional[str] = None
    activity: Optional[str] = None
    location: Optional[str] = None

    @field_validator("lighting", "weather", "activity", "location")
    @classmethod
    def normalise_labels(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v


Observation = Annotated[
    Union[EmotionObservation, SensoryObservation, EnvironmentalObservation],
    Field(discriminator="kind"),
]


class ObservationBatch(BaseModel):
    """All observations of one subject over some window.

    Never mutated in place: filtering and slicing build new batches.
    """

    subject_id: str = Field(..., min_length=1, max_length=128)
    observations: tuple[Observation, ...] = ()

    model_config = {"frozen": True}

    def __len__(self) -> int:
        return len(self.observations)

    # ── Derived views ────────────────────────────────────────────────────

    def of_kind(self, kind: ObservationKind) -> tuple[Observation, ...]:
        return tuple(o for o in self.observations if o.kind == kind.value)

    @property
    def emotions(self) -> tuple[EmotionObservation, ...]:
        return self.of_kind(ObservationKind.EMOTION)  # type: ignore[return-value]

    @property
    def sensory(self) -> tuple[SensoryObservation, ...]:
        return self.of_kind(ObservationKind.SENSORY)  # type: ignore[return-value]

    @property
    def environmental(self) -> tuple[EnvironmentalObservation, ...]:
        return self.of_kind(ObservationKind.ENVIRONMENTAL)  # type: ignore[return-value]

    @property
    def is_empty(self) -> bool:
        return not self.observations

    @property
    def earliest_timestamp(self) -> datetime | None:
        if not self.observations:
            return None
        return min(o.timestamp for o in self.observations)

    @property
    def latest_timestamp(self) -> datetime | None:
        if not self.observations:
            return None
        return max(o.timestamp for o in self.observations)

    @property
    def subject_ids(self) -> frozenset[str]:
        """The batch subject plus any subject referenced by an observation."""
        return frozenset({self.subject_id, *(o.subject_id for o in self.observations)})

    # ── Derivation ───────────────────────────────────────────────────────

    def with_observations(self, observations: list[Observation] | tuple[Observation, ...]) -> ObservationBatch:
        """Return a new batch for the same subject holding *observations*."""
        return ObservationBatch(subject_id=self.subject_id, observations=tuple(observations))

    def since(self, cutoff: datetime) -> ObservationBatch:
        """Observations with ``timestamp >= cutoff``, order preserved."""
        return self.with_observations([o for o in self.observations if o.timestamp >= cutoff])
