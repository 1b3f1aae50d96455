from __future__ import annotations

from saferoute import edge_weight_cache
from saferoute.edge_weight_cache import EdgeWeightCache

KEY = ("dhaka", "walk", 1, 2, 0)


class _Clock:
    def __init__(self, now_ms: int = 1_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def test_get_computes_once_within_ttl() -> None:
    clock = _Clock()
    cache = EdgeWeightCache(ttl_s=60, clock_ms=clock)
    calls = {"n": 0}

    def _compute() -> float:
        calls["n"] += 1
        return 42.0

    assert cache.get(KEY, _compute) == 42.0
    clock.now_ms += 59_999
    assert cache.get(KEY, _compute) == 42.0
    assert calls["n"] == 1
    stats = cache.snapshot()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["computations"] == 1


def test_entries_expire_at_ttl() -> None:
    clock = _Clock()
    cache = EdgeWeightCache(ttl_s=60, clock_ms=clock)
    cache.store(KEY, 5.0)
    clock.now_ms += 60_000
    assert cache.lookup(KEY) is None
    assert cache.get(KEY, lambda: 7.0) == 7.0
    assert cache.lookup(KEY) == 7.0


def test_zero_ttl_never_serves() -> None:
    cache = EdgeWeightCache(ttl_s=0, clock_ms=_Clock())
    cache.store(KEY, 1.0)
    assert cache.lookup(KEY) is None


def test_lookup_and_store_many_use_caller_time() -> None:
    cache = EdgeWeightCache(ttl_s=10, clock_ms=_Clock(0))
    other = ("dhaka", "walk", 2, 1, 1)
    cache.store_many({KEY: (3.0, 100_000), other: (4.0, 95_000)})
    assert cache.lookup(KEY, now_ms=109_999) == 3.0
    assert cache.lookup(other, now_ms=105_000) is None
    cache.store_many({})
    assert cache.snapshot()["size"] == 2


def test_max_entries_evicts_least_recently_used() -> None:
    cache = EdgeWeightCache(ttl_s=60, max_entries=2, clock_ms=_Clock())
    cache.store(("r", "walk", 1, 2, 0), 1.0)
    cache.store(("r", "walk", 2, 3, 1), 2.0)
    assert cache.lookup(("r", "walk", 1, 2, 0)) == 1.0  # now most recent
    cache.store(("r", "walk", 3, 4, 2), 3.0)
    assert cache.lookup(("r", "walk", 2, 3, 1)) is None
    assert cache.lookup(("r", "walk", 1, 2, 0)) == 1.0
    assert cache.snapshot()["evictions"] == 1


def test_clear_and_module_helpers() -> None:
    cache = EdgeWeightCache(ttl_s=60, clock_ms=_Clock())
    cache.store(KEY, 1.0)
    cache.record_computations(3)
    assert cache.snapshot()["computations"] == 3
    assert cache.clear() == 1
    assert cache.snapshot()["size"] == 0

    edge_weight_cache.clear_edge_weight_cache()
    edge_weight_cache.EDGE_WEIGHT_CACHE.store(KEY, 9.0)
    try:
        assert edge_weight_cache.edge_weight_cache_stats()["size"] == 1
    finally:
        assert edge_weight_cache.clear_edge_weight_cache() == 1
