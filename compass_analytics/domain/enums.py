"""Controlled enumerations for the compass-analytics domain.

Every categorical field in the domain MUST reference an enum defined here.
Free-form strings are only accepted for open vocabularies (emotion
categories, sensory modalities, triggers).
"""

from __future__ import annotations

from enum import Enum


class ObservationKind(str, Enum):
    """The three kinds of record a subject's history is made of."""

    EMOTION = "emotion"
    SENSORY = "sensory"
    ENVIRONMENTAL = "environmental"


class SensoryResponse(str, Enum):
    """Polarity of a subject's response to a sensory input."""

    SEEKING = "seeking"
    AVOIDING = "avoiding"
    NEUTRAL = "neutral"


class EscalationPattern(str, Enum):
    SUDDEN = "sudden"
    GRADUAL = "gradual"
    UNKNOWN = "unknown"


class ResultKind(str, Enum):
    """Logical category of an analysis result; doubles as the cache tag."""

    PATTERNS = "patterns"
    CORRELATIONS = "correlations"
    ANOMALIES = "anomalies"
    PREDICTIONS = "predictions"
    ALERTS = "alerts"
    CHART = "chart"


class ResultStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"


class Significance(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class AlertType(str, Enum):
    CONCERN = "concern"
    IMPROVEMENT = "improvement"
    PATTERN = "pattern"


class InsightType(str, Enum):
    PREDICTION = "prediction"
    TREND = "trend"
    RISK = "risk"


class SensitivityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Vocabularies shared by the kernels.  Categories are compared lower-cased.
NEGATIVE_EMOTIONS: frozenset[str] = frozenset(
    {"anxious", "frustrated", "angry", "overwhelmed", "sad"}
)
POSITIVE_EMOTIONS: frozenset[str] = frozenset(
    {"happy", "calm", "focused", "excited", "content", "proud", "relaxed"}
)
STRESS_EMOTIONS: frozenset[str] = frozenset({"anxious", "frustrated", "overwhelmed", "angry"})


class TaskKind(str, Enum):
    """Identity of an analysis function; the prefix of every cache key it owns."""

    EMOTION_PATTERNS = "emotion_patterns"
    SENSORY_PATTERNS = "sensory_patterns"
    ENVIRONMENTAL_CORRELATIONS = "environmental_correlations"
    ANOMALIES = "anomalies"
    PREDICTIVE_INSIGHTS = "predictive_insights"
    EMOTION_DISTRIBUTION = "emotion_distribution"
    SENSORY_RESPONSES = "sensory_responses"
    EMOTION_TRENDS = "emotion_trends"
    TRIGGER_ALERTS = "trigger_alerts"
