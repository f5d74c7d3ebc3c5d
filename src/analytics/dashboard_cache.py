from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from src.shared.time import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    stored_at: datetime


class DashboardCache(Generic[T]):
    """Process-local TTL cache for dashboard aggregates.

    Expired entries stay readable through ``get_stale`` until the next sweep so a
    failed or slow recompute can fall back to the last good value. Sweeps run
    lazily on access once ``sweep_seconds`` have passed since the previous one.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        sweep_seconds: int = 600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_seconds = sweep_seconds
        self.clock = clock
        self._entries: Dict[Hashable, CacheEntry[T]] = {}
        self._lock = Lock()
        self._last_sweep = clock()

    def _age_seconds(self, entry: CacheEntry[T], now: datetime) -> int:
        return max(int((now - entry.stored_at).total_seconds()), 0)

    def get(self, key: Hashable) -> Optional[Tuple[T, int]]:
        now = self.clock()
        self._maybe_sweep(now)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            logger.debug("Dashboard cache miss %s", key)
            return None
        age = self._age_seconds(entry, now)
        if age >= self.ttl_seconds:
            logger.debug("Dashboard cache expired %s age=%ds", key, age)
            return None
        logger.debug("Dashboard cache hit %s age=%ds", key, age)
        return entry.value, age

    def get_stale(self, key: Hashable) -> Optional[Tuple[T, int]]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return entry.value, self._age_seconds(entry, self.clock())

    def put(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self.clock())

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items() if self._age_seconds(entry, now) >= self.ttl_seconds
            ]
            for key in expired:
                del self._entries[key]
            self._last_sweep = now
        if expired:
            logger.debug("Dashboard cache sweep removed %d entries", len(expired))
        return len(expired)

    def _maybe_sweep(self, now: datetime) -> None:
        if (now - self._last_sweep).total_seconds() >= self.sweep_seconds:
            self.sweep()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
