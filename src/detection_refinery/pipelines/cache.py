"""In-memory result cache keyed by a content hash of the detection payload."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class CacheParams:
    max_size: int = 1000
    ttl_s: float = 300.0
    # Share of `max_size` evicted (least recently used first) when the cache is full.
    evict_fraction: float = 0.1


@dataclass(frozen=True)
class CacheStats:
    size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass
class _Entry:
    value: Any
    created_at: float
    access_count: int = 0


def content_key(raw: str | bytes) -> str:
    """sha256 hex digest of a raw payload."""
    data = raw.encode("utf-8") if isinstance(raw, str) else raw
    return hashlib.sha256(data).hexdigest()


@dataclass
class DetectionCache:
    """LRU cache with a per-entry time to live.

    Expired entries are dropped on lookup and count as misses.
    """

    params: CacheParams = field(default_factory=CacheParams)
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self.clock() - entry.created_at > self.params.ttl_s:
                del self._entries[key]
                self._misses += 1
                return None
            entry.access_count += 1
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.params.max_size:
                n = min(len(self._entries), max(1, int(self.params.max_size * self.params.evict_fraction)))
                for _ in range(n):
                    self._entries.popitem(last=False)
                self._evictions += n
                LOG.debug("Detection cache full; evicted %d entries", n)
            self._entries[key] = _Entry(value=value, created_at=self.clock())

    def clear(self) -> int:
        with self._lock:
            n = len(self._entries)
            self._entries.clear()
            return n

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )
