"""
Query embedding cache: LRU with a hard TTL, keyed by normalized query text.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np

from ..util.logging import logger


@dataclass
class CacheEntry:
    key: str
    vector: np.ndarray
    created_at: float
    last_accessed_at: float
    hit_count: int = 0


def normalize_query(text: str) -> str:
    """Trim and case-fold a query before keying."""
    return text.strip().casefold()


def cache_key(text: str) -> str:
    return hashlib.sha256(normalize_query(text).encode("utf-8")).hexdigest()


class EmbeddingCache:
    """Bounded, thread-safe map from query text to embedding vector.

    Entries older than `ttl_sec` are invalid and dropped lazily on read;
    when full, the least recently used entry is evicted.
    """

    def __init__(self, max_entries: int = 1024, ttl_sec: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1: {max_entries}")

        self.max_entries = max_entries
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def get(self, query_text: str) -> Optional[np.ndarray]:
        key = cache_key(query_text)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            if now - entry.created_at > self.ttl_sec:
                del self._entries[key]
                self.expirations += 1
                self.misses += 1
                logger.log_cache_event("expired", {"key": key[:12]})
                return None

            entry.last_accessed_at = now
            entry.hit_count += 1
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.vector

    def put(self, query_text: str, vector) -> None:
        key = cache_key(query_text)
        now = self._clock()

        stored = np.array(vector, dtype=np.float32)
        stored.setflags(write=False)

        with self._lock:
            self._entries[key] = CacheEntry(key=key, vector=stored, created_at=now, last_accessed_at=now)
            self._entries.move_to_end(key)

            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.log_cache_event("evicted", {"key": evicted_key[:12]})

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "expirations": self.expirations,
            }
