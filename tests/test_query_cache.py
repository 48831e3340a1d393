"""Tests for the TTL query cache."""

from call_insights.services.query_cache import QueryCache, make_cache_key


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestQueryCache:
    def test_get_and_set(self):
        cache = QueryCache(ttl_seconds=60, max_entries=10, clock=FakeClock())
        cache.set("k", "v")

        assert cache.get("k") == "v"
        assert cache.get("missing") is None
        assert len(cache) == 1

    def test_entries_expire(self):
        clock = FakeClock()
        cache = QueryCache(ttl_seconds=60, max_entries=10, clock=clock)
        cache.set("k", "v")

        clock.advance(59)
        assert cache.get("k") == "v"

        clock.advance(1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_expired_entries_swept_on_write(self):
        clock = FakeClock()
        cache = QueryCache(ttl_seconds=10, max_entries=10, clock=clock)
        cache.set("old", 1)
        clock.advance(20)

        cache.set("new", 2)

        assert len(cache) == 1

    def test_oldest_insertion_evicted_when_full(self):
        cache = QueryCache(ttl_seconds=60, max_entries=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_rewriting_a_key_refreshes_it(self):
        clock = FakeClock()
        cache = QueryCache(ttl_seconds=60, max_entries=2, clock=clock)
        cache.set("a", 1)
        clock.advance(50)
        cache.set("a", 2)
        clock.advance(50)

        assert cache.get("a") == 2

    def test_clear(self):
        cache = QueryCache(ttl_seconds=60, max_entries=2, clock=FakeClock())
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0

    def test_instances_are_isolated(self):
        first = QueryCache(ttl_seconds=60, max_entries=2, clock=FakeClock())
        second = QueryCache(ttl_seconds=60, max_entries=2, clock=FakeClock())
        first.set("a", 1)
        assert second.get("a") is None


class TestCacheKey:
    def test_normalizes_question(self):
        assert make_cache_key("  How many   REFUNDS? ", 10) == make_cache_key("how many refunds?", 10)

    def test_record_count_and_scope_matter(self):
        base = make_cache_key("q", 10, "general")
        assert base != make_cache_key("q", 11, "general")
        assert base != make_cache_key("q", 10, "sentiment")
