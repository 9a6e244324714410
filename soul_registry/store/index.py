"""
Record store contract - get / put / iterate / delete over namespaced keys.
The store is canonical; the resolution service derives mappings from it.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, Optional, Tuple


class IRecordStore(ABC):
    """Abstract interface for key-value record storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict]:
        """Return the value stored under key, or None if absent."""
        pass

    @abstractmethod
    def put(self, key: str, value: Dict) -> None:
        """Insert or replace the value under key."""
        pass

    @abstractmethod
    def put_many(self, items: Iterable[Tuple[str, Dict]]) -> None:
        """Write several keys as one atomic unit."""
        pass

    @abstractmethod
    def iterate(self, prefix: Optional[str] = None) -> Iterator[Tuple[str, Dict]]:
        """Yield (key, value) pairs in key order, optionally restricted to a key prefix."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns False if it was not present."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records from the store."""
        pass

    def count(self, prefix: Optional[str] = None) -> int:
        """Number of stored keys under prefix."""
        return sum(1 for _ in self.iterate(prefix))

    def health_check(self) -> bool:
        return True


class InMemoryRecordStore(IRecordStore):
    """Dict-backed store for tests and ephemeral registries."""

    def __init__(self):
        self._records = {}  # key -> value
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict]:
        with self._lock:
            value = self._records.get(key)
        # Callers must not be able to mutate stored state through a returned dict
        return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: Dict) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(value)

    def put_many(self, items: Iterable[Tuple[str, Dict]]) -> None:
        staged = [(key, copy.deepcopy(value)) for key, value in items]
        with self._lock:
            self._records.update(staged)

    def iterate(self, prefix: Optional[str] = None) -> Iterator[Tuple[str, Dict]]:
        # Snapshot so writers during iteration do not break the scan
        with self._lock:
            snapshot = sorted(self._records.items())
        for key, value in snapshot:
            if prefix is None or key.startswith(prefix):
                yield key, copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def count(self, prefix: Optional[str] = None) -> int:
        with self._lock:
            if prefix is None:
                return len(self._records)
            return sum(1 for key in self._records if key.startswith(prefix))
