"""Thread-safe key/value store with per-entry expiry.

Expired entries are evicted when read; there is no background sweeper.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    expires_at: float | None  # None = never expires


class TTLStore(Generic[V]):
    """A lock-guarded dict of :class:`CacheEntry` keyed by string."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: V, ttl_seconds: float) -> None:
        """Store ``value``; ``ttl_seconds <= 0`` stores it without expiry."""
        expires_at = self._clock() + ttl_seconds if ttl_seconds > 0 else None
        with self._lock:
            self._entries[key] = CacheEntry(key, value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
