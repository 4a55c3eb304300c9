"""Tests for the TaggedCache: tags, live TTL and the size bound."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from compass_analytics.cache.tagged_cache import TaggedCache
from compass_analytics.domain.configuration import ConfigurationHandle

_T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class _Clock:
    """Manually advanced replacement for utc_now."""

    def __init__(self, start: datetime = _T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> _Clock:
    fake = _Clock()
    monkeypatch.setattr("compass_analytics.cache.tagged_cache.utc_now", fake)
    return fake


@pytest.fixture
def handle() -> ConfigurationHandle:
    return ConfigurationHandle()


@pytest.fixture
def cache(handle: ConfigurationHandle, clock: _Clock) -> TaggedCache:
    return TaggedCache(handle)


class TestBasics:
    def test_get_set_has_delete(self, cache: TaggedCache) -> None:
        assert cache.get("k") is None
        cache.set("k", {"v": 1})
        assert cache.has("k")
        assert cache.get("k") == {"v": 1}
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert not cache.has("k")

    def test_hit_returns_same_object(self, cache: TaggedCache) -> None:
        value = object()
        cache.set("k", value)
        assert cache.get("k") is value

    def test_clear_returns_count(self, cache: TaggedCache) -> None:
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert cache.size() == 0


class TestTags:
    def test_invalidate_by_tag_exact_count(self, cache: TaggedCache) -> None:
        cache.set("a", 1, {"student:1", "patterns"})
        cache.set("b", 2, {"student:1", "anomalies"})
        cache.set("c", 3, {"student:2", "patterns"})
        cache.set("d", 4)

        assert cache.invalidate_by_tag("student:1") == 2

        assert cache.get("a") is None
        assert cache.get("b") is None
        assert cache.get("c") == 3
        assert cache.get("d") == 4
        assert cache.keys_for_tag("patterns") == frozenset({"c"})

    def test_unknown_tag_removes_nothing(self, cache: TaggedCache) -> None:
        cache.set("a", 1, {"x"})
        assert cache.invalidate_by_tag("y") == 0
        assert cache.size() == 1

    def test_replacing_entry_replaces_tags(self, cache: TaggedCache) -> None:
        cache.set("a", 1, {"old"})
        cache.set("a", 2, {"new"})
        assert cache.invalidate_by_tag("old") == 0
        assert cache.invalidate_by_tag("new") == 1

    def test_expired_entries_do_not_inflate_tag_count(
        self, cache: TaggedCache, clock: _Clock
    ) -> None:
        cache.set("old", 1, {"t"})
        clock.advance(601)
        cache.set("fresh", 2, {"t"})
        assert cache.invalidate_by_tag("t") == 1

    def test_invalidate_by_pattern(self, cache: TaggedCache) -> None:
        cache.set("anomalies:1", 1)
        cache.set("anomalies:2", 2)
        cache.set("emotion_patterns:1", 3)
        assert cache.invalidate_by_pattern(lambda k: k.startswith("anomalies:")) == 2
        assert cache.has("emotion_patterns:1")


class TestTTL:
    def test_visible_up_to_and_including_ttl(self, cache: TaggedCache, clock: _Clock) -> None:
        cache.set("k", 1)
        clock.advance(600)
        assert cache.get("k") == 1
        clock.advance(0.001)
        assert cache.get("k") is None

    def test_ttl_is_read_live(
        self, cache: TaggedCache, clock: _Clock, handle: ConfigurationHandle
    ) -> None:
        cache.set("k", 1)
        clock.advance(120)
        assert cache.has("k")
        handle.update({"cache": {"ttl_seconds": 60}})
        assert not cache.has("k")

    def test_widening_ttl_revives_unpurged_entries(
        self, cache: TaggedCache, clock: _Clock, handle: ConfigurationHandle
    ) -> None:
        handle.update({"cache": {"ttl_seconds": 10}})
        cache.set("k", 1)
        clock.advance(20)
        handle.update({"cache": {"ttl_seconds": 60}})
        assert cache.get("k") == 1

    def test_replacing_resets_age(self, cache: TaggedCache, clock: _Clock) -> None:
        cache.set("k", 1)
        clock.advance(500)
        cache.set("k", 2)
        clock.advance(500)
        assert cache.get("k") == 2

    def test_purge_expired(self, cache: TaggedCache, clock: _Clock) -> None:
        cache.set("a", 1)
        clock.advance(300)
        cache.set("b", 2)
        clock.advance(301)
        assert cache.purge_expired() == 1
        assert cache.size() == 1
        assert cache.stats()["expirations"] == 1


class TestSizeBound:
    def test_oldest_entry_is_evicted(self, cache: TaggedCache, handle: ConfigurationHandle) -> None:
        handle.update({"cache": {"max_size": 2}})
        cache.set("a", 1, {"t"})
        cache.set("b", 2)
        cache.set("c", 3)
        assert not cache.has("a")
        assert cache.has("b") and cache.has("c")
        assert cache.keys_for_tag("t") == frozenset()
        assert cache.stats()["evictions"] == 1

    def test_replacing_existing_key_does_not_evict(
        self, cache: TaggedCache, handle: ConfigurationHandle
    ) -> None:
        handle.update({"cache": {"max_size": 2}})
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        assert cache.size() == 2
        assert cache.get("b") == 2

    def test_expired_entries_are_purged_before_evicting(
        self, cache: TaggedCache, clock: _Clock, handle: ConfigurationHandle
    ) -> None:
        handle.update({"cache": {"max_size": 2, "ttl_seconds": 10}})
        cache.set("stale", 1)
        clock.advance(5)
        cache.set("live", 2)
        clock.advance(6)
        cache.set("new", 3)
        assert cache.has("live")
        assert cache.has("new")
        assert cache.stats()["evictions"] == 0
