"""AnalysisConfiguration and the ConfigurationHandle that owns the live copy.

The configuration is a frozen pydantic model split into sections.  Kernels
declare which sections they read; the engine fingerprints only those, so an
update to an unrelated section never invalidates a cached result.

The handle is explicitly constructed and injected.  There is no module-level
instance: every engine that should observe the same updates is given the
same handle.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError, model_validator

from compass_analytics.domain.enums import SensitivityLevel
from compass_analytics.foundation.errors import ConfigurationError

logger = logging.getLogger(__name__)


# ── Sections ─────────────────────────────────────────────────────────────────


class PatternAnalysisSettings(BaseModel):
    min_data_points: int = Field(default=3, ge=1)
    correlation_threshold: float = Field(default=0.25, ge=0.0, le=1.0)
    high_intensity_threshold: int = Field(default=4, ge=1, le=5)
    concern_frequency_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    emotion_consistency_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    moderate_negative_threshold: float = Field(default=0.4, ge=0.0, le=1.0)

    model_config = {"frozen": True, "extra": "forbid"}


class EnhancedAnalysisSettings(BaseModel):
    trend_threshold: float = Field(default=0.05, ge=0.0)
    anomaly_threshold: float = Field(default=1.5, gt=0.0, description="Standard deviations")
    min_sample_size: int = Field(default=5, ge=1)
    prediction_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    risk_assessment_threshold: int = Field(default=3, ge=1)

    model_config = {"frozen": True, "extra": "forbid"}


class TimeWindowSettings(BaseModel):
    default_analysis_days: int = Field(default=30, ge=1)
    recent_data_days: int = Field(default=7, ge=1)
    short_term_days: int = Field(default=14, ge=1)
    long_term_days: int = Field(default=90, ge=1)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def windows_must_nest(self) -> TimeWindowSettings:
        if not self.recent_data_days <= self.short_term_days <= self.long_term_days:
            raise ValueError(
                "time windows must satisfy recent_data_days <= short_term_days <= long_term_days"
            )
        return self


class AlertSensitivitySettings(BaseModel):
    """Sensitivity bands and multipliers.

    The bands partition a 0–1 magnitude (correlation strength, negative-emotion
    share) into low / medium / high tiers and must be strictly ascending.
    """

    level: SensitivityLevel = SensitivityLevel.MEDIUM
    low: float = 0.3
    medium: float = 0.5
    high: float = 0.7
    emotion_intensity_multiplier: float = Field(default=1.0, gt=0.0)
    frequency_multiplier: float = Field(default=1.0, gt=0.0)
    anomaly_multiplier: float = Field(default=1.0, gt=0.0)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def bands_must_ascend(self) -> AlertSensitivitySettings:
        if not 0.0 < self.low < self.medium < self.high <= 1.0:
            raise ValueError(
                f"sensitivity bands must satisfy 0 < low < medium < high <= 1 "
                f"(got {self.low}, {self.medium}, {self.high})"
            )
        return self


class CacheSettings(BaseModel):
    ttl_seconds: float = Field(default=600.0, gt=0.0)
    max_size: int = Field(default=500, ge=1)
    invalidate_on_config_change: bool = True

    model_config = {"frozen": True, "extra": "forbid"}


class AnalysisConfiguration(BaseModel):
    """Process-wide analysis tunables.  Immutable; replaced wholesale on update."""

    pattern_analysis: PatternAnalysisSettings = Field(default_factory=PatternAnalysisSettings)
    enhanced_analysis: EnhancedAnalysisSettings = Field(default_factory=EnhancedAnalysisSettings)
    time_windows: TimeWindowSettings = Field(default_factory=TimeWindowSettings)
    alert_sensitivity: AlertSensitivitySettings = Field(default_factory=AlertSensitivitySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    model_config = {"frozen": True, "extra": "forbid"}

    def section(self, name: str) -> BaseModel:
        """Return the named section, raising ConfigurationError if unknown."""
        if name not in type(self).model_fields:
            raise ConfigurationError(f"Unknown configuration section: {name!r}")
        return getattr(self, name)


# ── Presets ──────────────────────────────────────────────────────────────────

PRESETS: dict[str, dict[str, Any]] = {
    "conservative": {
        "pattern_analysis": {
            "min_data_points": 5,
            "correlation_threshold": 0.4,
            "concern_frequency_threshold": 0.4,
        },
        "enhanced_analysis": {"anomaly_threshold": 2.0, "min_sample_size": 8},
        "alert_sensitivity": {
            "level": "low",
            "emotion_intensity_multiplier": 0.8,
            "frequency_multiplier": 0.8,
            "anomaly_multiplier": 0.8,
        },
    },
    "balanced": {},
    "sensitive": {
        "pattern_analysis": {
            "min_data_points": 2,
            "correlation_threshold": 0.15,
            "concern_frequency_threshold": 0.2,
        },
        "enhanced_analysis": {"anomaly_threshold": 1.0, "min_sample_size": 3},
        "alert_sensitivity": {
            "level": "high",
            "emotion_intensity_multiplier": 1.2,
            "frequency_multiplier": 1.2,
            "anomaly_multiplier": 1.2,
        },
    },
}


def deep_merge(base: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *changes* into a copy of *base*.

    Nested dicts are merged key by key; any other value replaces the base
    value outright.
    """
    result = copy.deepcopy(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


# ── Handle ───────────────────────────────────────────────────────────────────

ConfigurationListener = Callable[[AnalysisConfiguration], None]


class ConfigurationHandle:
    """Owner of the live AnalysisConfiguration and its subscriber list.

    Readers take ``current`` (an immutable snapshot).  Writers go through
    ``update`` / ``apply_preset`` / ``reset_to_defaults`` / ``import_json``,
    which validate before publishing.  A rejected update raises
    ConfigurationError and leaves the published snapshot untouched.
    """

    def __init__(self, initial: AnalysisConfiguration | None = None) -> None:
        self._lock = threading.RLock()
        self._current = initial or AnalysisConfiguration()
        self._listeners: list[ConfigurationListener] = []

    @property
    def current(self) -> AnalysisConfiguration:
        return self._current

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, changes: dict[str, Any]) -> AnalysisConfiguration:
        """Deep-merge *changes* into the current configuration and publish it."""
        with self._lock:
            merged = deep_merge(self._current.model_dump(mode="json"), changes)
            return self._replace(merged, reason="update")

    def apply_preset(self, name: str) -> AnalysisConfiguration:
        if name not in PRESETS:
            raise ConfigurationError(
                f"Unknown preset {name!r}; expected one of {sorted(PRESETS)}"
            )
        with self._lock:
            merged = deep_merge(AnalysisConfiguration().model_dump(mode="json"), PRESETS[name])
            return self._replace(merged, reason=f"preset:{name}")

    def reset_to_defaults(self) -> AnalysisConfiguration:
        with self._lock:
            return self._replace(AnalysisConfiguration().model_dump(mode="json"), reason="reset")

    def export_json(self) -> str:
        return self._current.model_dump_json(indent=2)

    def import_json(self, text: str) -> AnalysisConfiguration:
        """Replace the configuration with a full JSON document."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Configuration is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration JSON must be an object")
        with self._lock:
            return self._replace(data, reason="import")

    # ── Subscription ─────────────────────────────────────────────────────

    def subscribe(self, listener: ConfigurationListener) -> Callable[[], None]:
        """Register *listener*; return a callable that removes it again."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    # ── Internal ─────────────────────────────────────────────────────────

    def _replace(self, data: dict[str, Any], *, reason: str) -> AnalysisConfiguration:
        """Validate, publish and notify.

        Must be called while holding self._lock.
        """
        try:
            candidate = AnalysisConfiguration.model_validate(data)
        except ValidationError as exc:
            logger.warning("Rejected configuration %s: %d error(s)", reason, exc.error_count())
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

        self._current = candidate
        listeners = list(self._listeners)
        logger.info("Configuration published (%s), notifying %d subscriber(s)", reason, len(listeners))

        for listener in listeners:
            try:
                listener(candidate)
            except Exception:
                logger.exception("Configuration subscriber %r failed", listener)
        return candidate
