"""Tests for the active-rule cache."""

import pytest

from universal_config.storage import RuleCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestRuleCache:
    """TTL, invalidation and eviction."""

    def test_get_or_load_caches(self, clock, make_rule):
        cache = RuleCache(ttl_seconds=30, clock=clock)
        calls = []

        def loader():
            calls.append(1)
            return [make_rule("a", {})]

        first = cache.get_or_load("org", "booking", loader)
        second = cache.get_or_load("org", "booking", loader)

        assert first == second
        assert isinstance(first, tuple)
        assert len(calls) == 1

    def test_entries_expire(self, clock, make_rule):
        cache = RuleCache(ttl_seconds=30, clock=clock)
        cache.put("org", "booking", [make_rule("a", {})])

        clock.now = 29.9
        assert cache.get("org", "booking") is not None
        clock.now = 30.0
        assert cache.get("org", "booking") is None

    def test_invalidate(self, clock, make_rule):
        cache = RuleCache(ttl_seconds=30, clock=clock)
        cache.put("org", "booking", [make_rule("a", {})])
        cache.put("org", "pricing", [])

        assert cache.invalidate("org", "booking") is True
        assert cache.invalidate("org", "booking") is False
        assert cache.get("org", "booking") is None
        assert cache.get("org", "pricing") == ()

    def test_invalidate_all(self, clock):
        cache = RuleCache(ttl_seconds=30, clock=clock)
        cache.put("org", "booking", [])
        cache.put("org", "pricing", [])

        assert cache.invalidate_all() == 2
        assert cache.get_stats()["size"] == 0

    def test_stale_load_is_not_cached(self, clock, make_rule):
        cache = RuleCache(ttl_seconds=30, clock=clock)

        def loader():
            # A write lands while the load is in flight
            cache.invalidate("org", "booking")
            return [make_rule("stale", {})]

        rules = cache.get_or_load("org", "booking", loader)

        assert [r.id for r in rules] == ["stale"]
        assert cache.get("org", "booking") is None

    def test_loader_errors_are_not_cached(self, clock):
        cache = RuleCache(ttl_seconds=30, clock=clock)

        def loader():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            cache.get_or_load("org", "booking", loader)
        assert cache.get_stats()["size"] == 0

    def test_zero_ttl_disables_caching(self, clock):
        cache = RuleCache(ttl_seconds=0, clock=clock)
        cache.put("org", "booking", [])
        assert cache.get("org", "booking") is None

    def test_eviction_at_capacity(self, clock):
        cache = RuleCache(ttl_seconds=30, max_size=4, clock=clock)
        for i in range(4):
            cache.put(f"org-{i}", "booking", [])

        cache.put("org-new", "booking", [])

        stats = cache.get_stats()
        assert stats["size"] == 3
        assert "org-0/booking" not in stats["cached_keys"]
        assert "org-new/booking" in stats["cached_keys"]

    def test_stats(self, clock):
        cache = RuleCache(ttl_seconds=30, clock=clock)
        cache.get("org", "booking")
        cache.put("org", "booking", [])
        cache.get("org", "booking")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_generations_are_dropped_after_loads(self, clock):
        cache = RuleCache(ttl_seconds=30, clock=clock)

        def loader():
            cache.invalidate("org", "booking")
            return []

        for i in range(50):
            cache.invalidate(f"org-{i}", "booking")
            cache.get_or_load(f"org-{i}", "pricing", list)
        cache.get_or_load("org", "booking", loader)
        cache.invalidate_all()

        assert cache._generations == {}
        assert cache._loading == {}
        assert cache.get_stats()["loads_in_flight"] == 0
