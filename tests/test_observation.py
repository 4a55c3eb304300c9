"""Tests for the observation models and ObservationBatch."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any

import pytest
from pydantic import TypeAdapter, ValidationError

from compass_analytics.domain.enums import ObservationKind, SensoryResponse
from compass_analytics.domain.observation import (
    EmotionObservation,
    EnvironmentalObservation,
    Observation,
    ObservationBatch,
    SensoryObservation,
)

# ── Helpers ──────────────────────────────────────────────────────────────────

BASE = datetime(2025, 7, 1, 9, 0, 0, tzinfo=timezone.utc)
SUBJECT = "student-1"

_ids = count(1)


def _next_id(prefix: str) -> str:
    return f"{prefix}-{next(_ids)}"


def _emotion(
    category: str = "happy",
    intensity: int = 3,
    *,
    at: datetime | None = None,
    day: int = 0,
    **kw: Any,
) -> EmotionObservation:
    return EmotionObservation(
        observation_id=kw.pop("observation_id", _next_id("emo")),
        subject_id=kw.pop("subject_id", SUBJECT),
        timestamp=at or BASE + timedelta(days=day),
        category=category,
        intensity=intensity,
        **kw,
    )


def _sensory(
    modality: str = "auditory",
    response: SensoryResponse | str = SensoryResponse.SEEKING,
    *,
    at: datetime | None = None,
    day: int = 0,
    **kw: Any,
) -> SensoryObservation:
    return SensoryObservation(
        observation_id=kw.pop("observation_id", _next_id("sen")),
        subject_id=kw.pop("subject_id", SUBJECT),
        timestamp=at or BASE + timedelta(days=day),
        modality=modality,
        response=response,
        **kw,
    )


def _environment(
    *,
    at: datetime | None = None,
    day: int = 0,
    **kw: Any,
) -> EnvironmentalObservation:
    return EnvironmentalObservation(
        observation_id=kw.pop("observation_id", _next_id("env")),
        subject_id=kw.pop("subject_id", SUBJECT),
        timestamp=at or BASE + timedelta(days=day),
        **kw,
    )


def _batch(*observations, subject_id: str = SUBJECT) -> ObservationBatch:
    return ObservationBatch(subject_id=subject_id, observations=tuple(observations))


# ── Models ───────────────────────────────────────────────────────────────────


class TestObservationModels:
    def test_emotion_category_and_triggers_are_normalised(self) -> None:
        obs = _emotion(" Anxious ", 4, triggers=(" Noise ", "", "transition"))
        assert obs.category == "anxious"
        assert obs.triggers == ("noise", "transition")

    def test_intensity_bounds(self) -> None:
        with pytest.raises(ValidationError):
            _emotion(intensity=0)
        with pytest.raises(ValidationError):
            _emotion(intensity=6)

    def test_naive_timestamp_gets_utc(self) -> None:
        obs = _emotion(at=datetime(2025, 7, 1, 12, 0))
        assert obs.timestamp.tzinfo is not None
        assert obs.timestamp.utcoffset() == timedelta(0)

    def test_observations_are_frozen(self) -> None:
        obs = _emotion()
        with pytest.raises(ValidationError):
            obs.intensity = 5  # type: ignore[misc]

    def test_session_key_falls_back_to_utc_day(self) -> None:
        assert _emotion(session_id="s-9").session_key == "s-9"
        assert _emotion(at=datetime(2025, 7, 3, 23, 59, tzinfo=timezone.utc)).session_key == "2025-07-03"

    def test_discriminated_union_round_trips_kind(self) -> None:
        adapter = TypeAdapter(Observation)
        sensory = _sensory("tactile", "avoiding")
        revived = adapter.validate_json(sensory.model_dump_json())
        assert isinstance(revived, SensoryObservation)
        assert revived == sensory

    def test_environment_bounds(self) -> None:
        with pytest.raises(ValidationError):
            _environment(noise_level=11)
        assert _environment(lighting=" Natural ").lighting == "natural"


# ── Batch ────────────────────────────────────────────────────────────────────


class TestObservationBatch:
    def test_empty_batch(self) -> None:
        batch = _batch()
        assert batch.is_empty
        assert len(batch) == 0
        assert batch.latest_timestamp is None
        assert batch.earliest_timestamp is None

    def test_kind_views(self) -> None:
        batch = _batch(_emotion(), _sensory(), _environment(noise_level=3), _emotion("sad", 2))
        assert len(batch.emotions) == 2
        assert len(batch.sensory) == 1
        assert len(batch.environmental) == 1
        assert batch.of_kind(ObservationKind.SENSORY) == batch.sensory

    def test_boundary_timestamps(self) -> None:
        batch = _batch(_emotion(day=3), _emotion(day=1), _emotion(day=2))
        assert batch.earliest_timestamp == BASE + timedelta(days=1)
        assert batch.latest_timestamp == BASE + timedelta(days=3)

    def test_subject_ids_include_foreign_observations(self) -> None:
        batch = _batch(_emotion(), _emotion(subject_id="student-2"))
        assert batch.subject_ids == frozenset({SUBJECT, "student-2"})

    def test_derivation_builds_new_batches(self) -> None:
        batch = _batch(_emotion(day=0), _emotion(day=5))
        later = batch.since(BASE + timedelta(days=1))
        assert len(later) == 1
        assert len(batch) == 2
        assert later.subject_id == batch.subject_id

    def test_batch_round_trips_through_json(self) -> None:
        batch = _batch(_emotion(triggers=("noise",)), _sensory(), _environment(temperature=21.5))
        assert ObservationBatch.model_validate_json(batch.model_dump_json()) == batch
