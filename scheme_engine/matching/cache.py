"""Bounded LRU cache of evaluation results."""

import threading
from collections import OrderedDict
from datetime import date
from typing import FrozenSet, List, Optional, Tuple

from .models import SchemeMatch

CacheKey = Tuple[str, int, date, Optional[FrozenSet[str]]]


class EligibilityCache:
    """Thread-safe LRU keyed by (profile hash, corpus version, as_of, categories).

    Entries never need invalidation: a new corpus version is a new key.
    A ``max_size`` of 0 disables caching.
    """

    def __init__(self, max_size: int = 1024):
        if max_size < 0:
            raise ValueError("max_size cannot be negative")
        self.max_size = max_size
        self._entries: "OrderedDict[CacheKey, Tuple[SchemeMatch, ...]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> Optional[List[SchemeMatch]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return list(entry)

    def put(self, key: CacheKey, matches: List[SchemeMatch]) -> None:
        if self.max_size == 0:
            return
        with self._lock:
            self._entries[key] = tuple(matches)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
