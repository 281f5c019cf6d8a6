"""
Bounded LRU cache of simulation results keyed by input fingerprint.

Entries never expire by time; the least recently used one is evicted when a
new fingerprint would exceed capacity. The serialized shape is a list of
``[fingerprint, probability]`` pairs, oldest first.
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ResultCache:
    def __init__(self, capacity: int = 10) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self.metrics = CacheMetrics()

    def get(self, key: str) -> Optional[float]:
        if key not in self._entries:
            self.metrics.misses += 1
            return None
        self._entries.move_to_end(key)
        self.metrics.hits += 1
        return self._entries[key]

    def set(self, key: str, probability: float) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = probability
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self.metrics.evictions += 1

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        # Membership checks do not count as use.
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_list(self) -> List[Tuple[str, float]]:
        return [(key, value) for key, value in self._entries.items()]

    @classmethod
    def from_list(cls, pairs: Iterable[Sequence], capacity: int = 10) -> "ResultCache":
        cache = cls(capacity)
        for key, probability in pairs:
            cache.set(key, float(probability))
        return cache
