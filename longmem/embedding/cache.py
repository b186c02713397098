"""
Bounded TTL cache for embedding vectors.

Eviction is by insertion order: a hit does not move an entry to the back.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Union


@dataclass
class _CacheEntry:
    vector: tuple
    created_at: float


class EmbeddingCache:
    """Thread-safe (text, input_type) -> vector cache"""

    def __init__(self, max_size: int = 256, ttl_minutes: float = 30.0):
        if max_size < 1:
            raise ValueError("Embedding cache max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_minutes * 60.0
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(text: str, input_type: Optional[str]) -> str:
        return hashlib.sha256(f"{input_type or ''}:{text}".encode("utf-8")).hexdigest()[:24]

    def get(self, text: str, input_type: Optional[str] = None) -> Optional[List[float]]:
        key = self._key(text, input_type)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if time.monotonic() - entry.created_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return list(entry.vector)

    def set(self, text: str, input_type: Optional[str], vector: List[float]) -> None:
        key = self._key(text, input_type)
        # Immutable snapshot so later caller mutations never leak into the cache
        frozen = tuple(float(v) for v in vector)
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = _CacheEntry(vector=frozen, created_at=time.monotonic())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def hit_rate(self) -> Optional[float]:
        with self._lock:
            hits, misses = self.hits, self.misses
        total = hits + misses
        return hits / total if total else None

    @property
    def stats(self) -> Dict[str, Union[int, str]]:
        with self._lock:
            size = len(self._entries)
            hits, misses = self.hits, self.misses
        total = hits + misses
        return {
            "size": size,
            "hits": hits,
            "misses": misses,
            "hit_rate": f"{(hits / total) * 100:.1f}%" if total else "N/A",
        }
