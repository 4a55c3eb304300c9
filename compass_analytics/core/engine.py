"""CachedAnalysisEngine — kernels behind fingerprints, a tagged cache and a bridge.

Design principles:
    1. A cache key is ``function id + input fingerprint + fingerprint of the
       kernel's declared config sections + params``.  Nothing else.
    2. A hit returns the stored result object itself; the kernel is not
       called and nothing is written.
    3. A miss runs the kernel through the ComputationBridge and stores the
       result tagged ``student:{id}`` (every subject in the batch), with its
       result category, and with the engine's owner tag.
    4. Configuration updates swap the (snapshot, fingerprints) pair
       atomically.  Kernels whose fingerprint changed get new keys; with
       ``cache.invalidate_on_config_change`` their old entries are purged too.
       Kernels whose fingerprint did not change keep hitting.
    5. A cached value that fails the shape check is deleted and recomputed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from compass_analytics.cache.fingerprint import (
    FingerprintMode,
    build_cache_key,
    fingerprint_config,
    fingerprint_observations,
    fingerprint_value,
)
from compass_analytics.cache.tagged_cache import TaggedCache
from compass_analytics.core.bridge import ComputationBridge, InlineBridge
from compass_analytics.domain.configuration import AnalysisConfiguration, ConfigurationHandle
from compass_analytics.domain.enums import TaskKind
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import (
    AnalysisResult,
    AlertReport,
    AnomalyReport,
    ChartSeries,
    CorrelationReport,
    InsightReport,
    PatternReport,
)
from compass_analytics.foundation.errors import AnalyticsError
from compass_analytics.foundation.identifiers import new_id
from compass_analytics.kernels.registry import KERNELS, kernel_for
from compass_analytics.models.task import TaskRequest

logger = logging.getLogger(__name__)

CHART_KINDS: tuple[TaskKind, ...] = (
    TaskKind.EMOTION_DISTRIBUTION,
    TaskKind.SENSORY_RESPONSES,
    TaskKind.EMOTION_TRENDS,
)


def subject_tag(subject_id: str) -> str:
    return f"student:{subject_id}"


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "hit_rate": round(self.hit_rate, 4),
        }


class CachedAnalysisEngine:
    """Caching front for the analysis kernels.

    Args:
        configuration: Shared configuration handle; the engine subscribes to
            it until ``destroy()``.
        cache: Cache to store results in.  Several engines may share one;
            each only invalidates its own entries via its owner tag.
        bridge: Execution strategy.  Defaults to an owned InlineBridge.
        fingerprint_mode: EXACT (default) or the opt-in APPROXIMATE mode.
        owner: Stable name for the owner tag (random if omitted).
    """

    def __init__(
        self,
        configuration: ConfigurationHandle,
        cache: Optional[TaggedCache] = None,
        bridge: Optional[ComputationBridge] = None,
        fingerprint_mode: FingerprintMode = FingerprintMode.EXACT,
        owner: Optional[str] = None,
    ) -> None:
        self._configuration = configuration
        self._cache = cache if cache is not None else TaggedCache(configuration)
        self._bridge: ComputationBridge = bridge if bridge is not None else InlineBridge()
        self._owns_bridge = bridge is None
        self._fingerprint_mode = fingerprint_mode
        self._owner_tag = f"engine:{owner or new_id()}"
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._snapshot = self._build_snapshot(configuration.current)
        self._unsubscribe: Optional[Any] = configuration.subscribe(self._on_configuration_change)
        self._destroyed = False

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def cache(self) -> TaggedCache:
        return self._cache

    @property
    def owner_tag(self) -> str:
        return self._owner_tag

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def config_fingerprint(self, task_kind: TaskKind) -> str:
        return self._snapshot[1][task_kind]

    # ── Core ─────────────────────────────────────────────────────────────

    def cache_key(self, task_kind: TaskKind, batch: ObservationBatch, **params: Any) -> str:
        _, fingerprints = self._snapshot
        return build_cache_key(
            task_kind.value,
            self._input_fingerprint(batch),
            fingerprints[task_kind],
            params,
        )

    async def analyze(self, task_kind: TaskKind, batch: ObservationBatch, **params: Any) -> AnalysisResult:
        """Return the cached result for this call, computing it on a miss."""
        if self._destroyed:
            raise AnalyticsError("CachedAnalysisEngine has been destroyed")

        spec = kernel_for(task_kind)
        config, fingerprints = self._snapshot
        input_fp = self._input_fingerprint(batch)
        key = build_cache_key(task_kind.value, input_fp, fingerprints[task_kind], params)

        cached = self._cache.get(key)
        if cached is not None:
            if isinstance(cached, spec.result_type):
                with self._lock:
                    self._hits += 1
                logger.debug("Cache hit %s for subject %s", key, batch.subject_id)
                return cached
            logger.warning(
                "Discarding malformed cache entry %s (%s, expected %s)",
                key, type(cached).__name__, spec.result_type.__name__,
            )
            self._cache.delete(key)

        with self._lock:
            self._misses += 1
        logger.debug("Cache miss %s for subject %s", key, batch.subject_id)

        request = TaskRequest(
            task_kind=task_kind,
            input_fingerprint=input_fp,
            observations=batch,
            configuration=config,
            params=params,
        )
        result = await self._bridge.run(request)

        tags = {subject_tag(sid) for sid in batch.subject_ids}
        tags.update({spec.category.value, self._owner_tag})
        self._cache.set(key, result, tags)
        return result

    # ── Named wrappers ───────────────────────────────────────────────────

    async def analyze_emotion_patterns(self, batch: ObservationBatch, **params: Any) -> PatternReport:
        return await self.analyze(TaskKind.EMOTION_PATTERNS, batch, **params)  # type: ignore[return-value]

    async def analyze_sensory_patterns(self, batch: ObservationBatch, **params: Any) -> PatternReport:
        return await self.analyze(TaskKind.SENSORY_PATTERNS, batch, **params)  # type: ignore[return-value]

    async def analyze_environmental_correlations(
        self, batch: ObservationBatch, **params: Any
    ) -> CorrelationReport:
        return await self.analyze(TaskKind.ENVIRONMENTAL_CORRELATIONS, batch, **params)  # type: ignore[return-value]

    async def detect_anomalies(self, batch: ObservationBatch, **params: Any) -> AnomalyReport:
        return await self.analyze(TaskKind.ANOMALIES, batch, **params)  # type: ignore[return-value]

    async def generate_predictive_insights(self, batch: ObservationBatch, **params: Any) -> InsightReport:
        return await self.analyze(TaskKind.PREDICTIVE_INSIGHTS, batch, **params)  # type: ignore[return-value]

    async def generate_trigger_alerts(self, batch: ObservationBatch, **params: Any) -> AlertReport:
        return await self.analyze(TaskKind.TRIGGER_ALERTS, batch, **params)  # type: ignore[return-value]

    async def build_chart(self, chart: TaskKind | str, batch: ObservationBatch) -> ChartSeries:
        kind = TaskKind(chart)
        if kind not in CHART_KINDS:
            raise ValueError(f"{kind.value} is not a chart transform")
        return await self.analyze(kind, batch)  # type: ignore[return-value]

    # ── Maintenance ──────────────────────────────────────────────────────

    def invalidate_student_cache(self, subject_id: str) -> int:
        count = self._cache.invalidate_by_tag(subject_tag(subject_id))
        logger.info("Invalidated %d cached result(s) for subject %s", count, subject_id)
        return count

    def invalidate_all_cache(self) -> int:
        count = self._cache.invalidate_by_tag(self._owner_tag)
        logger.info("Invalidated %d cached result(s) owned by %s", count, self._owner_tag)
        return count

    def get_cache_stats(self) -> CacheStats:
        self._cache.purge_expired()
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._cache.keys_for_tag(self._owner_tag)),
            )

    def destroy(self) -> None:
        """Release the configuration subscription and any owned bridge.

        Safe to call more than once.
        """
        if self._destroyed:
            return
        self._destroyed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._owns_bridge:
            self._bridge.close()
        logger.debug("Engine %s destroyed", self._owner_tag)

    # ── Internal ─────────────────────────────────────────────────────────

    def _input_fingerprint(self, batch: ObservationBatch) -> str:
        return fingerprint_value({
            "subject_id": batch.subject_id,
            "observations": fingerprint_observations(batch.observations, self._fingerprint_mode),
        })

    @staticmethod
    def _build_snapshot(
        config: AnalysisConfiguration,
    ) -> tuple[AnalysisConfiguration, dict[TaskKind, str]]:
        return config, {
            kind: fingerprint_config(config, spec.config_sections)
            for kind, spec in KERNELS.items()
        }

    def _on_configuration_change(self, config: AnalysisConfiguration) -> None:
        previous = self._snapshot[1]
        self._snapshot = self._build_snapshot(config)
        changed = {kind.value for kind, fp in self._snapshot[1].items() if previous.get(kind) != fp}
        if not changed:
            logger.debug("Configuration change irrelevant to every kernel; cache kept")
            return
        logger.info("Configuration change affects: %s", ", ".join(sorted(changed)))

        if config.cache.invalidate_on_config_change:
            owned = self._cache.keys_for_tag(self._owner_tag)
            purged = self._cache.invalidate_by_pattern(
                lambda key: key in owned and key.split(":", 1)[0] in changed
            )
            logger.info("Purged %d stale cached result(s)", purged)
