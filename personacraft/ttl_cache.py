from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    timestamp: float


class TTLCache(Generic[T]):
    """In-memory map whose entries expire after a fixed time-to-live.

    Expired entries are never returned. They are swept on every write, and a
    read that finds one removes it. Entries are replaced, never mutated.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] | None = None):
        self._ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock if callable(clock) else time.monotonic
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.RLock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @ttl_seconds.setter
    def ttl_seconds(self, value: float) -> None:
        with self._lock:
            self._ttl_seconds = max(0.0, float(value))

    def _is_live(self, entry: CacheEntry[T], now: float) -> bool:
        return (now - entry.timestamp) < self._ttl_seconds

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_live(entry, self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    def set(self, key: str, value: T) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(value=value, timestamp=now)
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if not self._is_live(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def discard_where(self, predicate: Callable[[T], bool]) -> int:
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if predicate(entry.value)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            now = self._clock()
            total = len(self._entries)
            valid = sum(1 for entry in self._entries.values() if self._is_live(entry, now))
        expired = total - valid
        hit_rate = f"{(valid / total) * 100:.2f}%" if total > 0 else "0%"
        return {
            "total_cache_entries": total,
            "valid_entries": valid,
            "expired_entries": expired,
            "cache_hit_rate": hit_rate,
            "ttl_seconds": self._ttl_seconds,
        }


__all__ = ["CacheEntry", "TTLCache"]
