import pytest

from urlrisk_agent.cache import MemoryCache, NoOpCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_get_set_and_miss(clock):
    cache = MemoryCache(capacity=10, default_ttl=60, clock=clock)
    assert cache.get("example.com") is None
    cache.set("example.com", {"risk": 0.1})
    assert cache.get("example.com") == {"risk": 0.1}
    assert cache.has("example.com")
    assert cache.stats.hits == 1
    assert cache.stats.misses == 1


def test_entries_expire(clock):
    cache = MemoryCache(capacity=10, default_ttl=60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl=5)
    clock.advance(5)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    clock.advance(55)
    assert not cache.has("a")
    assert cache.stats.expirations == 2


def test_per_entry_ttl_overrides_default(clock):
    cache = MemoryCache(capacity=10, default_ttl=30, clock=clock)
    cache.set("a", "x", ttl=100)
    clock.advance(50)
    assert cache.get("a") == "x"
    clock.advance(50)
    assert cache.get("a") is None


def test_lru_eviction(clock):
    cache = MemoryCache(capacity=2, default_ttl=60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert cache.has("a")
    assert not cache.has("b")
    assert cache.has("c")
    assert cache.stats.evictions == 1
    assert len(cache) == 2


def test_last_write_wins(clock):
    cache = MemoryCache(capacity=2, default_ttl=60, clock=clock)
    cache.set("a", 1)
    cache.set("a", 2)
    assert cache.get("a") == 2
    assert len(cache) == 1


def test_invalidate_and_clear(clock):
    cache = MemoryCache(capacity=10, default_ttl=10, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl=100)
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    cache.set("c", 3)
    clock.advance(20)
    assert not cache.has("c")
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


def test_rejects_none_and_bad_construction():
    with pytest.raises(ValueError):
        MemoryCache(capacity=0, default_ttl=1)
    with pytest.raises(ValueError):
        MemoryCache(capacity=1, default_ttl=0)
    with pytest.raises(ValueError):
        MemoryCache(capacity=1, default_ttl=1).set("a", None)


def test_hit_rate(clock):
    cache = MemoryCache(capacity=10, default_ttl=60, clock=clock)
    assert cache.stats.hit_rate == 0.0
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")
    assert cache.stats.hit_rate == 0.5


def test_noop_cache_never_stores():
    cache = NoOpCache()
    cache.set("a", 1)
    assert cache.get("a") is None
    assert not cache.has("a")
    assert cache.invalidate("a") is False
