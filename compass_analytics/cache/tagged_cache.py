"""TaggedCache — in-memory key/value store with tags and live TTL.

Design notes:
    - A threading.RLock serialises every mutation; reads see immutable values.
    - The TTL is read from the ConfigurationHandle on every visibility check,
      never captured at insertion, so narrowing ``cache.ttl_seconds`` starts
      expiring older entries immediately.
    - An entry is visible while ``now - created_at <= ttl``.  Expired entries
      are dropped lazily on access and eagerly by ``purge_expired``.
    - A tag index maps each tag to the keys carrying it, so tag invalidation
      does not scan unrelated entries.
    - ``cache.max_size`` bounds the entry count; inserting a new key into a
      full cache evicts the oldest entry first.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from compass_analytics.domain.configuration import ConfigurationHandle
from compass_analytics.foundation.clock import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    tags: frozenset[str]
    created_at: datetime


@dataclass
class CacheCounters:
    sets: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "sets": self.sets,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "invalidations": self.invalidations,
        }


class TaggedCache:
    """Thread-safe tagged cache whose TTL and size bound follow live config.

    Args:
        configuration: Handle supplying ``cache.ttl_seconds`` and
            ``cache.max_size`` at check time.
    """

    def __init__(self, configuration: ConfigurationHandle) -> None:
        self._configuration = configuration
        self._lock = threading.RLock()
        # dicts preserve insertion order, which is also age order
        self._entries: dict[str, CacheEntry] = {}
        self._tag_index: dict[str, set[str]] = {}
        self._counters = CacheCounters()

    # ── Public API ───────────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the value for *key*, or None if absent or expired."""
        with self._lock:
            entry = self._visible(key, utc_now())
            return entry.value if entry is not None else None

    def has(self, key: str) -> bool:
        with self._lock:
            return self._visible(key, utc_now()) is not None

    def set(self, key: str, value: Any, tags: Iterable[str] = ()) -> None:
        """Insert or replace *key*.  Replacing resets the entry's age."""
        with self._lock:
            now = utc_now()
            if key in self._entries:
                self._remove(key)
            else:
                self._make_room(now)
            entry = CacheEntry(key=key, value=value, tags=frozenset(tags), created_at=now)
            self._entries[key] = entry
            for tag in entry.tags:
                self._tag_index.setdefault(tag, set()).add(key)
            self._counters.sets += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def invalidate_by_tag(self, tag: str) -> int:
        """Remove every visible entry tagged *tag*; return the exact count.

        Expired entries are purged first so they never inflate the count.
        """
        with self._lock:
            self._purge_expired(utc_now())
            keys = list(self._tag_index.get(tag, ()))
            for key in keys:
                self._remove(key)
            self._counters.invalidations += len(keys)
            logger.debug("Invalidated %d entr(y/ies) by tag %s", len(keys), tag)
            return len(keys)

    def invalidate_by_pattern(self, predicate: Callable[[str], bool]) -> int:
        """Remove every visible entry whose key satisfies *predicate*."""
        with self._lock:
            self._purge_expired(utc_now())
            keys = [k for k in self._entries if predicate(k)]
            for key in keys:
                self._remove(key)
            self._counters.invalidations += len(keys)
            return len(keys)

    def clear(self) -> int:
        with self._lock:
            self._purge_expired(utc_now())
            count = len(self._entries)
            self._entries.clear()
            self._tag_index.clear()
            self._counters.invalidations += count
            return count

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_expired(utc_now())

    def size(self) -> int:
        """Number of visible entries."""
        with self._lock:
            self._purge_expired(utc_now())
            return len(self._entries)

    def keys_for_tag(self, tag: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._tag_index.get(tag, ()))

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._purge_expired(utc_now())
            return {
                "size": len(self._entries),
                "max_size": self._configuration.current.cache.max_size,
                "ttl_seconds": self._configuration.current.cache.ttl_seconds,
                "tags": len(self._tag_index),
                **self._counters.to_dict(),
            }

    # ── Internal ─────────────────────────────────────────────────────────

    def _ttl(self) -> timedelta:
        return timedelta(seconds=self._configuration.current.cache.ttl_seconds)

    def _visible(self, key: str, now: datetime) -> CacheEntry | None:
        """Return the entry if still within TTL, dropping it otherwise.

        Must be called while holding self._lock.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now - entry.created_at > self._ttl():
            self._remove(key)
            self._counters.expirations += 1
            return None
        return entry

    def _purge_expired(self, now: datetime) -> int:
        """Must be called while holding self._lock."""
        ttl = self._ttl()
        expired = [k for k, e in self._entries.items() if now - e.created_at > ttl]
        for key in expired:
            self._remove(key)
        self._counters.expirations += len(expired)
        return len(expired)

    def _make_room(self, now: datetime) -> None:
        """Ensure one more entry fits under ``cache.max_size``.

        Must be called while holding self._lock.
        """
        max_size = self._configuration.current.cache.max_size
        if len(self._entries) < max_size:
            return
        self._purge_expired(now)
        while len(self._entries) >= max_size:
            oldest = next(iter(self._entries))
            self._remove(oldest)
            self._counters.evictions += 1
            logger.debug("Evicted oldest cache entry %s (max_size=%d)", oldest, max_size)

    def _remove(self, key: str) -> None:
        """Must be called while holding self._lock."""
        entry = self._entries.pop(key)
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tag_index[tag]
