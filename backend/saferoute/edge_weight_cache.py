from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass
from threading import Lock

from .settings import settings


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class _EdgeWeightEntry:
    weight: float
    computed_at_ms: int


class EdgeWeightCache:
    """Per-edge risk memo with a hard TTL.

    Entries are immutable (weight, computed_at) pairs swapped under one lock,
    so readers never see a weight paired with the wrong timestamp. Incident
    writes do not invalidate entries; the TTL is the staleness bound.
    """

    def __init__(
        self,
        *,
        ttl_s: float,
        max_entries: int = 0,
        clock_ms: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._ttl_ms = max(0, int(float(ttl_s) * 1000))
        self._max_entries = max(0, int(max_entries))
        self._clock_ms = clock_ms
        self._lock = Lock()
        self._items: OrderedDict[Hashable, _EdgeWeightEntry] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._computations = 0

    def now_ms(self) -> int:
        return int(self._clock_ms())

    def _is_fresh(self, entry: _EdgeWeightEntry, now_ms: int) -> bool:
        return (now_ms - entry.computed_at_ms) < self._ttl_ms

    def lookup(self, key: Hashable, *, now_ms: int | None = None) -> float | None:
        now = self.now_ms() if now_ms is None else int(now_ms)
        with self._lock:
            entry = self._items.get(key)
            if entry is None or not self._is_fresh(entry, now):
                self._misses += 1
                return None
            if self._max_entries:
                self._items.move_to_end(key)
            self._hits += 1
            return entry.weight

    def _put_locked(self, key: Hashable, weight: float, computed_at_ms: int) -> None:
        if key in self._items:
            self._items.move_to_end(key)
        self._items[key] = _EdgeWeightEntry(weight=float(weight), computed_at_ms=int(computed_at_ms))
        while self._max_entries and len(self._items) > self._max_entries:
            self._items.popitem(last=False)
            self._evictions += 1

    def store(self, key: Hashable, weight: float, *, computed_at_ms: int | None = None) -> None:
        stamp = self.now_ms() if computed_at_ms is None else int(computed_at_ms)
        with self._lock:
            self._put_locked(key, weight, stamp)

    def store_many(self, entries: Mapping[Hashable, tuple[float, int]]) -> None:
        if not entries:
            return
        with self._lock:
            for key, (weight, computed_at_ms) in entries.items():
                self._put_locked(key, weight, computed_at_ms)

    def get(self, key: Hashable, compute: Callable[[], float]) -> float:
        now = self.now_ms()
        cached = self.lookup(key, now_ms=now)
        if cached is not None:
            return cached
        weight = float(compute())
        with self._lock:
            self._computations += 1
            self._put_locked(key, weight, now)
        return weight

    def record_computations(self, count: int) -> None:
        with self._lock:
            self._computations += max(0, int(count))

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def snapshot(self) -> dict[str, int | float]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "computations": self._computations,
                "ttl_s": self._ttl_ms / 1000.0,
                "max_entries": self._max_entries,
            }


EDGE_WEIGHT_CACHE = EdgeWeightCache(
    ttl_s=settings.cache_ttl_s,
    max_entries=settings.cache_max_entries,
)


def clear_edge_weight_cache() -> int:
    return EDGE_WEIGHT_CACHE.clear()


def edge_weight_cache_stats() -> dict[str, int | float]:
    return EDGE_WEIGHT_CACHE.snapshot()
