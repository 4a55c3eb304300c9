"""REST endpoints for analysis, observation upload and cache maintenance.

Paths:
    GET    /api/subjects/{id}/analysis/{kind}   cached analysis result
    POST   /api/subjects/{id}/observations      store + invalidate subject
    DELETE /api/subjects/{id}/cache             invalidate one subject
    DELETE /api/cache                           invalidate everything owned
    GET    /api/cache/stats                     hits / misses / size
    POST   /api/subjects/{id}/charts            start a progressive batch
    GET    /api/charts/{batch_id}               progressive batch snapshot

Insufficient data is a normal 200 response with ``status`` set accordingly.
Only a computation that failed on both execution paths maps to 503.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from compass_analytics.core.engine import CachedAnalysisEngine
from compass_analytics.core.scheduler import ProgressiveScheduler
from compass_analytics.domain.enums import TaskKind
from compass_analytics.domain.filters import DateRange, FilterCriteria
from compass_analytics.foundation.errors import ComputationError
from compass_analytics.models.upload import ObservationUpload
from compass_analytics.store.observation_store import ObservationStore

logger = logging.getLogger(__name__)


def _criteria(start: Optional[datetime], end: Optional[datetime]) -> Optional[FilterCriteria]:
    if start is None and end is None:
        return None
    try:
        return FilterCriteria(date_range=DateRange(start=start, end_exclusive=end))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc


def create_analysis_router(
    store: ObservationStore,
    engine: CachedAnalysisEngine,
    scheduler: ProgressiveScheduler,
) -> APIRouter:
    """Factory that wires the analysis endpoints to store, engine and scheduler."""

    router = APIRouter(prefix="/api", tags=["analysis"])

    @router.get("/subjects/{subject_id}/analysis/{kind}")
    async def analyze_subject(
        subject_id: str,
        kind: TaskKind,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        as_of: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Run (or fetch from cache) one analysis over the subject's history.

        Query params:
            start: inclusive lower bound on observation timestamps
            end: exclusive upper bound on observation timestamps
            as_of: reference time for the kernel's time windows
        """
        batch = await store.history(subject_id, _criteria(start, end))
        params: dict[str, Any] = {}
        if as_of is not None:
            params["as_of"] = as_of
        try:
            result = await engine.analyze(kind, batch, **params)
        except ComputationError as exc:
            logger.error("Analysis %s failed for subject %s: %s", kind.value, subject_id, exc)
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {
            "subject_id": subject_id,
            "task_kind": kind.value,
            "observations": len(batch),
            "result": result.model_dump(mode="json"),
        }

    @router.post("/subjects/{subject_id}/observations")
    async def upload_observations(subject_id: str, upload: ObservationUpload) -> dict[str, Any]:
        foreign = {o.subject_id for o in upload.observations} - {subject_id}
        if foreign:
            raise HTTPException(
                status_code=400,
                detail=f"Observations belong to other subjects: {sorted(foreign)}",
            )
        added = await store.add(upload.observations)
        invalidated = engine.invalidate_student_cache(subject_id) if added else 0
        return {
            "status": "accepted",
            "added": added.get(subject_id, 0),
            "invalidated": invalidated,
        }

    @router.delete("/subjects/{subject_id}/cache")
    async def invalidate_subject(subject_id: str) -> dict[str, Any]:
        return {"subject_id": subject_id, "invalidated": engine.invalidate_student_cache(subject_id)}

    @router.delete("/cache")
    async def invalidate_all() -> dict[str, Any]:
        return {"invalidated": engine.invalidate_all_cache()}

    @router.get("/cache/stats")
    async def cache_stats() -> dict[str, Any]:
        return {
            "engine": engine.get_cache_stats().to_dict(),
            "cache": engine.cache.stats(),
        }

    @router.post("/subjects/{subject_id}/charts")
    async def start_charts(subject_id: str, batch_id: Optional[str] = None) -> dict[str, Any]:
        batch = await store.history(subject_id)
        resolved = batch_id or subject_id
        generation = await scheduler.start(resolved, batch)
        return {
            "batch_id": resolved,
            "generation": generation,
            "stream": f"/ws/progress/{resolved}",
        }

    @router.get("/charts/{batch_id}")
    async def chart_snapshot(batch_id: str) -> dict[str, Any]:
        snapshot = scheduler.snapshot(batch_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
        return snapshot.model_dump(mode="json")

    return router
