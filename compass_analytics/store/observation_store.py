"""In-memory observation history with async-safe access.

Design notes:
    - An asyncio.Lock guards all mutations so concurrent request handlers
      never corrupt a subject's history.
    - The analytics core only ever reads through the ObservationSource
      protocol; swap implementations to change where history lives without
      touching the engine.
    - Ingest is idempotent per ``observation_id``: re-sending an observation
      does not duplicate it.
    - ``history`` hands out immutable ObservationBatch snapshots, optionally
      narrowed by FilterCriteria.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Protocol

from compass_analytics.domain.filters import FilterCriteria, apply_filters
from compass_analytics.domain.observation import Observation, ObservationBatch

logger = logging.getLogger(__name__)


class ObservationSource(Protocol):
    """Protocol for read-only access to a subject's raw history."""

    async def history(
        self, subject_id: str, criteria: Optional[FilterCriteria] = None
    ) -> ObservationBatch:
        """Return the subject's observations (possibly empty), oldest first."""
        ...


class StoreSummary:
    """Aggregate counts across all subjects.  Observability only."""

    __slots__ = ("subjects", "observations", "emotions", "sensory", "environmental")

    def __init__(
        self,
        subjects: int = 0,
        observations: int = 0,
        emotions: int = 0,
        sensory: int = 0,
        environmental: int = 0,
    ) -> None:
        self.subjects = subjects
        self.observations = observations
        self.emotions = emotions
        self.sensory = sensory
        self.environmental = environmental

    def to_dict(self) -> dict:
        return {
            "subjects": self.subjects,
            "observations": self.observations,
            "emotions": self.emotions,
            "sensory": self.sensory,
            "environmental": self.environmental,
        }


class ObservationStore:
    """Async-safe, in-memory store of observations keyed by subject id."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._by_subject: dict[str, list[Observation]] = {}
        self._seen_ids: dict[str, set[str]] = {}

    # ── Public API ───────────────────────────────────────────────────────

    async def add(self, observations: Iterable[Observation]) -> dict[str, int]:
        """Append new observations; return the number added per subject."""
        added: dict[str, int] = {}
        async with self._lock:
            for obs in observations:
                seen = self._seen_ids.setdefault(obs.subject_id, set())
                if obs.observation_id in seen:
                    continue
                seen.add(obs.observation_id)
                self._insert(obs)
                added[obs.subject_id] = added.get(obs.subject_id, 0) + 1
        for subject_id, count in added.items():
            logger.debug("Stored %d observation(s) for subject %s", count, subject_id)
        return added

    async def history(
        self, subject_id: str, criteria: Optional[FilterCriteria] = None
    ) -> ObservationBatch:
        async with self._lock:
            batch = ObservationBatch(
                subject_id=subject_id,
                observations=tuple(self._by_subject.get(subject_id, ())),
            )
        if criteria is not None:
            batch = apply_filters(batch, criteria)
        return batch

    async def subjects(self) -> list[str]:
        async with self._lock:
            return sorted(self._by_subject)

    async def remove_subject(self, subject_id: str) -> int:
        async with self._lock:
            removed = self._by_subject.pop(subject_id, [])
            self._seen_ids.pop(subject_id, None)
            return len(removed)

    async def summary(self) -> StoreSummary:
        async with self._lock:
            all_obs = [o for items in self._by_subject.values() for o in items]
            return StoreSummary(
                subjects=len(self._by_subject),
                observations=len(all_obs),
                emotions=sum(1 for o in all_obs if o.kind == "emotion"),
                sensory=sum(1 for o in all_obs if o.kind == "sensory"),
                environmental=sum(1 for o in all_obs if o.kind == "environmental"),
            )

    # ── Internals ────────────────────────────────────────────────────────

    def _insert(self, obs: Observation) -> None:
        """Keep each subject's list in timestamp order.

        Must be called while holding self._lock.
        """
        items = self._by_subject.setdefault(obs.subject_id, [])
        if not items or items[-1].timestamp <= obs.timestamp:
            items.append(obs)
            return
        index = len(items)
        while index > 0 and items[index - 1].timestamp > obs.timestamp:
            index -= 1
        items.insert(index, obs)
