"""compass-analytics — cached behavioural analytics over observation histories.

This is the application entry point.  It wires the ConfigurationHandle,
TaggedCache, ComputationBridge, CachedAnalysisEngine, ObservationStore,
ProgressiveScheduler and the HTTP / WebSocket endpoints together.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from compass_analytics.api.analyze import create_analysis_router
from compass_analytics.api.configuration import create_configuration_router
from compass_analytics.api.ws_progress import create_progress_router
from compass_analytics.cache.tagged_cache import TaggedCache
from compass_analytics.config import settings
from compass_analytics.core.bridge import create_bridge
from compass_analytics.core.engine import CachedAnalysisEngine
from compass_analytics.core.scheduler import ProgressiveScheduler
from compass_analytics.domain.configuration import ConfigurationHandle
from compass_analytics.store.observation_store import ObservationStore

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)

# ── Configuration ────────────────────────────────────────────────────────────

configuration = ConfigurationHandle()
configuration.apply_preset(settings.config_preset)
configuration.update({
    "cache": {
        "ttl_seconds": settings.cache_ttl_seconds,
        "max_size": settings.cache_max_size,
    },
})

# ── Engine ───────────────────────────────────────────────────────────────────

cache = TaggedCache(configuration)
bridge = create_bridge(
    settings.background_enabled,
    timeout=settings.dispatch_timeout_seconds,
    max_workers=settings.worker_max_workers,
)
engine = CachedAnalysisEngine(configuration, cache=cache, bridge=bridge, owner=settings.app_name)

# ── State ────────────────────────────────────────────────────────────────────

store = ObservationStore()
scheduler = ProgressiveScheduler(
    engine,
    stage_delay=settings.stage_delay_seconds,
    max_retained=settings.progress_max_retained,
)

# ── App ──────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await scheduler.shutdown()
    engine.destroy()
    bridge.close()
    logger.info("%s stopped", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Cached pattern, correlation, anomaly and predictive analytics",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Routes ───────────────────────────────────────────────────────────────────

app.include_router(create_analysis_router(store, engine, scheduler))
app.include_router(create_configuration_router(configuration))
app.include_router(create_progress_router(scheduler))


# ── Health ───────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> dict:
    summary = await store.summary()
    return {
        "status": "ok",
        "store": summary.to_dict(),
        "cache": engine.get_cache_stats().to_dict(),
        "background_healthy": getattr(bridge, "healthy", False),
        "configuration_subscribers": configuration.subscriber_count,
    }
