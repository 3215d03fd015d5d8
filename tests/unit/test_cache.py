# ABOUTME: Unit tests for the TTL cache
# ABOUTME: Tests lazy expiry, stale reads, invalidation and key helpers

import pytest

from argocd_status.core.cache import (
    CacheEntry,
    TTLCache,
    applications_key,
    detection_key,
    operator_key,
)


@pytest.mark.unit
class TestCacheEntry:
    """Tests for CacheEntry validity."""

    def test_valid_before_ttl(self):
        """Test entry is valid while younger than its TTL."""
        entry = CacheEntry(value="v", written_at=100.0, ttl_seconds=30)

        assert entry.is_valid(100.0) is True
        assert entry.is_valid(129.9) is True

    def test_invalid_at_ttl(self):
        """Test entry expires exactly at its TTL."""
        entry = CacheEntry(value="v", written_at=100.0, ttl_seconds=30)

        assert entry.is_valid(130.0) is False


@pytest.mark.unit
class TestTTLCache:
    """Tests for TTLCache."""

    def test_get_after_set_returns_value(self, clock):
        """Test a value is readable right after it is written."""
        cache = TTLCache(clock=clock)
        cache.set("detection:ctx1", {"installed": True}, 300)

        assert cache.get("detection:ctx1") == {"installed": True}

    def test_get_after_ttl_returns_none(self, clock):
        """Test a value is absent once its TTL has elapsed."""
        cache = TTLCache(clock=clock)
        cache.set("applications:ctx1", ["app"], 30)

        clock.advance(30)

        assert cache.get("applications:ctx1") is None

    def test_missing_key_returns_none(self, clock):
        """Test unknown keys read as absent."""
        assert TTLCache(clock=clock).get("nope") is None

    def test_expired_entry_is_not_evicted(self, clock):
        """Test expiry is lazy: the entry stays in storage."""
        cache = TTLCache(clock=clock)
        cache.set("k", "v", 10)
        clock.advance(60)

        assert cache.get("k") is None
        assert "k" in cache.keys()

    def test_get_stale_ignores_expiry(self, clock):
        """Test get_stale returns the last written value after expiry."""
        cache = TTLCache(clock=clock)
        cache.set("k", "old", 10)
        clock.advance(3600)

        assert cache.get_stale("k") == "old"

    def test_set_replaces_entry_and_resets_age(self, clock):
        """Test overwriting a key restarts its TTL."""
        cache = TTLCache(clock=clock)
        cache.set("k", "first", 10)
        clock.advance(8)
        cache.set("k", "second", 10)
        clock.advance(8)

        assert cache.get("k") == "second"

    def test_per_key_ttl(self, clock):
        """Test each entry keeps its own TTL."""
        cache = TTLCache(clock=clock)
        cache.set("short", 1, 30)
        cache.set("long", 2, 300)
        clock.advance(60)

        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_invalidate(self, clock):
        """Test invalidate removes the entry, stale copy included."""
        cache = TTLCache(clock=clock)
        cache.set("k", "v", 10)

        cache.invalidate("k")
        cache.invalidate("never-set")

        assert cache.get("k") is None
        assert cache.get_stale("k") is None

    def test_invalidate_prefix(self, clock):
        """Test invalidate_prefix removes only matching keys."""
        cache = TTLCache(clock=clock)
        cache.set("applications:a", 1, 30)
        cache.set("applications:b", 2, 30)
        cache.set("detection:a", 3, 300)

        cache.invalidate_prefix("applications:")

        assert cache.keys() == ["detection:a"]

    def test_clear(self, clock):
        """Test clear empties the cache."""
        cache = TTLCache(clock=clock)
        cache.set("a", 1, 30)
        cache.set("b", 2, 30)

        cache.clear()

        assert cache.keys() == []

    def test_contains_respects_expiry(self, clock):
        """Test membership follows get semantics."""
        cache = TTLCache(clock=clock)
        cache.set("k", "v", 5)

        assert "k" in cache
        clock.advance(5)
        assert "k" not in cache


@pytest.mark.unit
class TestKeyHelpers:
    """Tests for cache key helpers."""

    def test_keys_include_context(self):
        """Test keys are namespaced by data class and context."""
        assert detection_key("prod") == "detection:prod"
        assert applications_key("prod") == "applications:prod"
        assert operator_key("prod") == "operator:prod"

    def test_none_context_uses_current(self):
        """Test the current kube context has a stable key."""
        assert detection_key(None) == "detection:current"
