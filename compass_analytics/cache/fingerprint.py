"""Fingerprints — short deterministic digests standing in for larger values.

Observation collections are fingerprinted order-insensitively: each item is
hashed from its canonical JSON form and the item digests are combined by a
modular sum, so reordering a batch never changes its fingerprint while
adding, removing, duplicating or editing any item does.  This stays O(n)
without sorting.

Configuration subsets are small, so they are always hashed exactly from
canonical JSON (sorted keys, compact separators).

Critical rules:
    - Two value-identical collections fingerprint identically regardless of
      object identity or order.
    - Only the configuration sections a kernel declares feed its key.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Iterable, Sequence

from pydantic import BaseModel

from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.observation import Observation

_MODULUS = 1 << 256


class FingerprintMode(str, Enum):
    """How observation collections are digested.

    EXACT hashes every item's full content.  APPROXIMATE only looks at the
    collection length and its boundary timestamps; it is cheaper but two
    equal-length collections with the same first/last timestamps collide.
    """

    EXACT = "exact"
    APPROXIMATE = "approximate"


def canonical_json(value: Any) -> str:
    """Serialise *value* deterministically (pydantic-aware, sorted keys)."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fingerprint_value(value: Any) -> str:
    """SHA-256 of the canonical JSON form of *value*."""
    return _digest(canonical_json(value))


def _exact(observations: Sequence[Observation]) -> str:
    total = 0
    for obs in observations:
        item = hashlib.sha256(canonical_json(obs).encode("utf-8")).digest()
        total = (total + int.from_bytes(item, "big")) % _MODULUS
    return _digest(f"exact|{len(observations)}|{total:064x}")


def _approximate(observations: Sequence[Observation]) -> str:
    if not observations:
        return _digest("approximate|0")
    stamps = [o.timestamp for o in observations]
    return _digest(
        f"approximate|{len(observations)}|{min(stamps).isoformat()}|{max(stamps).isoformat()}"
    )


def fingerprint_observations(
    observations: Sequence[Observation],
    mode: FingerprintMode = FingerprintMode.EXACT,
) -> str:
    """Order-insensitive digest of an observation collection.

    Args:
        observations: Any sequence of observations (tuple, list, batch.observations).
        mode: EXACT (default) or the opt-in APPROXIMATE shortcut.

    Returns:
        Full SHA-256 hex digest (64 characters).
    """
    if mode is FingerprintMode.APPROXIMATE:
        return _approximate(observations)
    return _exact(observations)


def fingerprint_config(config: AnalysisConfiguration, sections: Iterable[str]) -> str:
    """Digest only the named configuration *sections*.

    Section order in *sections* is irrelevant.  Unknown section names raise
    ConfigurationError via ``AnalysisConfiguration.section``.
    """
    subset = {name: config.section(name).model_dump(mode="json") for name in sorted(set(sections))}
    return fingerprint_value(subset)


def build_cache_key(
    function_id: str,
    input_fingerprint: str,
    config_fingerprint: str,
    params: dict[str, Any] | None = None,
) -> str:
    """Combine the parts of an analysis call into one cache key.

    The function id stays readable as a prefix so callers can invalidate a
    whole function with a predicate such as ``key.startswith("anomalies:")``.
    """
    params_fp = fingerprint_value(params or {})
    combined = f"{input_fingerprint}|{config_fingerprint}|{params_fp}"
    return f"{function_id}:{_digest(combined)[:32]}"
