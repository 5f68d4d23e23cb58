import logging
import threading

import pytest

from toolrun.cache import BoundedCache


def test_lru_eviction_respects_reads(clock):
    cache = BoundedCache(max_size=2, clock=clock)
    cache.set("A", 1)
    cache.set("B", 2)
    assert cache.get("A") == 1
    cache.set("C", 3)
    assert cache.get("B") is None
    assert cache.get("A") == 1
    assert cache.get("C") == 3


def test_overwrite_does_not_evict(clock):
    cache = BoundedCache(max_size=2, clock=clock)
    cache.set("A", 1)
    cache.set("B", 2)
    cache.set("A", 10)
    assert len(cache) == 2
    assert cache.get("A") == 10
    assert cache.get("B") == 2


def test_ttl_expiry_is_lazy(clock):
    cache = BoundedCache(max_size=10, ttl=60, clock=clock)
    cache.set("k", "v")
    assert cache.get("k") == "v"
    clock.advance(60)
    assert cache.get("k") == "v"
    clock.advance(0.5)
    assert len(cache) == 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_ttl_measured_from_creation_not_access(clock):
    cache = BoundedCache(max_size=10, ttl=10, clock=clock)
    cache.set("k", "v")
    for _ in range(3):
        clock.advance(4)
        cache.get("k")
    assert cache.get("k") is None


def test_contains_is_expiry_aware_and_keeps_recency(clock):
    cache = BoundedCache(max_size=2, ttl=5, clock=clock)
    cache.set("A", 1)
    cache.set("B", 2)
    assert "A" in cache
    cache.set("C", 3)
    # contains() did not refresh A, so A was the eviction victim.
    assert not cache.contains("A")
    clock.advance(6)
    assert not cache.contains("B")


def test_get_default_and_get_or_set(clock):
    cache = BoundedCache(clock=clock)
    assert cache.get("missing", "fallback") == "fallback"
    calls = []

    def factory():
        calls.append(1)
        return "built"

    assert cache.get_or_set("k", factory) == "built"
    assert cache.get_or_set("k", factory) == "built"
    assert len(calls) == 1


def test_cached_falsy_values_are_hits(clock):
    cache = BoundedCache(clock=clock)
    cache.set("zero", 0)
    assert cache.get_or_set("zero", lambda: 99) == 0


def test_delete_clear_keys_stats(clock):
    cache = BoundedCache(max_size=4, ttl=100, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.delete("a") == 1
    assert cache.delete("a") is None
    assert cache.keys() == ["b"]
    stats = cache.stats()
    assert stats == {"size": 1, "max_size": 4, "ttl": 100, "utilization": 0.25}
    cache.clear()
    assert len(cache) == 0


def test_invalid_size():
    with pytest.raises(ValueError):
        BoundedCache(max_size=0)


def test_eviction_logged(clock, caplog):
    cache = BoundedCache(max_size=1, clock=clock)
    with caplog.at_level(logging.DEBUG, logger="toolrun.cache"):
        cache.set("old", 1)
        cache.set("new", 2)
    assert "cache.evicted key=old" in caplog.text


def test_concurrent_access_stays_bounded():
    cache = BoundedCache(max_size=50)

    def worker(offset):
        for i in range(500):
            cache.set((offset, i), i)
            cache.get((offset, i - 1))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(cache) == 50


def test_unsynchronized_mode(clock):
    cache = BoundedCache(max_size=1, thread_safe=False, clock=clock)
    cache.set("a", 1)
    assert cache.get("a") == 1
