"""
Bounded read-through cache for resolve results (name -> Mapping).
LRU eviction; a size of 0 disables caching.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, Optional

from .schema import Mapping


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data


class ResolveCache:
    """LRU cache of resolved mappings keyed by the queried name."""

    def __init__(self, max_entries: int = 1024):
        self.max_entries = max_entries
        self._entries = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> Optional[Mapping]:
        with self._lock:
            mapping = self._entries.get(name)
            if mapping is None:
                self.stats.misses += 1
                return None
            self._entries.move_to_end(name)
            self.stats.hits += 1
            return mapping

    def put(self, name: str, mapping: Mapping) -> None:
        if self.max_entries <= 0:
            return
        with self._lock:
            self._entries[name] = mapping
            self._entries.move_to_end(name)
            while len(self._entries) > self.max_entries:
                # Oldest first
                self._entries.popitem(last=False)
                self.stats.evictions += 1

    def invalidate_keys(self, record_keys: Iterable[str]) -> int:
        """Drop every cached mapping that touches one of the given record keys."""
        keys = set(record_keys)
        with self._lock:
            stale = [
                name for name, mapping in self._entries.items()
                if mapping.source.key in keys or (mapping.target is not None and mapping.target.key in keys)
            ]
            for name in stale:
                del self._entries[name]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
