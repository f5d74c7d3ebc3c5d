from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator

from src.core.deadline import remaining_seconds
from src.core.errors import RequestTimeoutError


class KeyedLock:
    """One mutex per key with a bounded wait, used to serialize agent counter updates."""

    def __init__(self, wait_seconds: float) -> None:
        self.wait_seconds = wait_seconds
        self._locks: Dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, key: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        if not lock.acquire(timeout=remaining_seconds(self.wait_seconds)):
            raise RequestTimeoutError(f"Timed out waiting for exclusive access to {key}")
        try:
            yield
        finally:
            lock.release()
