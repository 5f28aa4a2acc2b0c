"""Unit tests for the cache layer.

Tests cover:
- InMemoryCache TTL expiry and prefix scans
- ResilientCache turning backend failures into misses / no-ops
- Scoped invalidation (analysis, user views, repositories)
- Key builders
"""

from unittest.mock import MagicMock

import pytest

from reviewloom.core.cache import InMemoryCache, ResilientCache, build_cache, keys


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ── Tests: InMemoryCache ──────────────────────────────────────────────────


class TestInMemoryCache:

    def test_get_returns_value_before_expiry(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        cache.set_with_ttl("a", "1", 60)

        clock.now += 59
        assert cache.get("a") == "1"

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        cache.set_with_ttl("a", "1", 60)

        clock.now += 60
        assert cache.get("a") is None

    def test_delete_counts_existing_keys(self):
        cache = InMemoryCache()
        cache.set_with_ttl("a", "1", 60)
        cache.set_with_ttl("b", "2", 60)

        assert cache.delete("a", "b", "missing") == 2
        assert cache.get("a") is None

    def test_prefix_scan_skips_expired(self):
        clock = FakeClock()
        cache = InMemoryCache(clock=clock)
        cache.set_with_ttl("analyses:user:u1:1", "x", 10)
        cache.set_with_ttl("analyses:user:u1:2", "x", 100)
        cache.set_with_ttl("analyses:user:u2:1", "x", 100)

        clock.now += 50
        assert cache.find_keys_by_prefix("analyses:user:u1:") == {"analyses:user:u1:2"}

    def test_stats(self):
        cache = InMemoryCache()
        cache.set_with_ttl("a", "1", 60)
        assert cache.get_stats()["entries"] == 1


# ── Tests: ResilientCache ─────────────────────────────────────────────────


class TestResilientCache:

    def test_json_round_trip(self):
        cache = ResilientCache(InMemoryCache())
        cache.set_json("k", {"a": [1, 2]}, 60)
        assert cache.get_json("k") == {"a": [1, 2]}

    def test_read_failure_is_a_miss(self):
        backend = MagicMock()
        backend.get.side_effect = ConnectionError("down")
        cache = ResilientCache(backend)

        assert cache.get_json("k") is None

    def test_write_failure_is_swallowed(self):
        backend = MagicMock()
        backend.set_with_ttl.side_effect = ConnectionError("down")
        cache = ResilientCache(backend)

        cache.set_json("k", {"a": 1}, 60)  # must not raise

    def test_delete_and_prefix_failures_are_swallowed(self):
        backend = MagicMock()
        backend.delete.side_effect = ConnectionError("down")
        backend.find_keys_by_prefix.side_effect = ConnectionError("down")
        cache = ResilientCache(backend)

        cache.delete("k")
        cache.delete_prefix("p:")
        assert cache.find_keys("p:") == set()

    def test_undecodable_entry_is_dropped(self):
        backend = InMemoryCache()
        backend.set_with_ttl("k", "{not json", 60)
        cache = ResilientCache(backend)

        assert cache.get_json("k") is None
        assert backend.get("k") is None

    def test_is_available_false_when_ping_raises(self):
        backend = MagicMock()
        backend.ping.side_effect = ConnectionError("down")
        assert ResilientCache(backend).is_available() is False


# ── Tests: Scoped invalidation ────────────────────────────────────────────


class TestInvalidation:

    def _seeded(self):
        cache = ResilientCache(InMemoryCache())
        for key in (
            keys.analysis_key("a1"),
            keys.analysis_status_key("a1"),
            keys.user_listing_key("u1", 1, 10, {"sortBy": "createdAt"}),
            keys.user_listing_key("u1", 2, 10, {"status": "FAILED"}),
            keys.user_stats_key("u1"),
            keys.user_listing_key("u2", 1, 10, {}),
            keys.repository_listing_key("u1", 1, 10),
            keys.repository_detail_key("r1", "u1"),
            keys.report_key("abc"),
        ):
            cache.set_json(key, {"cached": True}, 600)
        return cache

    def test_invalidate_analysis_drops_derived_entries(self):
        cache = self._seeded()
        cache.invalidate_analysis("a1", "u1")

        assert cache.get_json(keys.analysis_key("a1")) is None
        assert cache.get_json(keys.analysis_status_key("a1")) is None
        assert cache.get_json(keys.user_stats_key("u1")) is None
        assert cache.find_keys(keys.user_listing_prefix("u1")) == set()

    def test_invalidate_analysis_keeps_other_users_and_reports(self):
        cache = self._seeded()
        cache.invalidate_analysis("a1", "u1")

        assert len(cache.find_keys(keys.user_listing_prefix("u2"))) == 1
        assert cache.get_json(keys.report_key("abc")) == {"cached": True}

    def test_invalidate_repositories(self):
        cache = self._seeded()
        cache.invalidate_repositories("u1", "r1")

        assert cache.find_keys(keys.repository_listing_prefix("u1")) == set()
        assert cache.get_json(keys.repository_detail_key("r1", "u1")) is None


# ── Tests: Keys and factory ───────────────────────────────────────────────


class TestKeys:

    def test_listing_key_is_order_independent(self):
        a = keys.user_listing_key("u1", 1, 10, {"status": "FAILED", "sortBy": "createdAt"})
        b = keys.user_listing_key("u1", 1, 10, {"sortBy": "createdAt", "status": "FAILED"})
        assert a == b

    def test_listing_key_distinguishes_filters(self):
        a = keys.user_listing_key("u1", 1, 10, {"status": "FAILED"})
        b = keys.user_listing_key("u1", 1, 10, {"status": "COMPLETED"})
        assert a != b

    def test_report_key_prefix(self):
        assert keys.report_key("f00").startswith(keys.REPORT_PREFIX)

    def test_build_cache_defaults_to_memory(self):
        cache = build_cache("memory")
        assert isinstance(cache.backend, InMemoryCache)

    def test_build_cache_redis_requires_url(self):
        with pytest.raises(ValueError):
            build_cache("redis", None)
