from __future__ import annotations

import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from src.core.errors import RequestTimeoutError


class Deadline:
    """Logical per-request deadline, checked at every store round-trip and lock wait."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(self.expires_at - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self) -> None:
        if self.expired():
            raise RequestTimeoutError()


_current_deadline: ContextVar[Optional[Deadline]] = ContextVar("request_deadline", default=None)


def current_deadline() -> Optional[Deadline]:
    return _current_deadline.get()


def check_deadline() -> None:
    deadline = _current_deadline.get()
    if deadline is not None:
        deadline.check()


def remaining_seconds(default: float) -> float:
    deadline = _current_deadline.get()
    if deadline is None:
        return default
    return min(default, deadline.remaining())


@contextmanager
def request_deadline(seconds: float) -> Iterator[Deadline]:
    deadline = Deadline(seconds)
    token = _current_deadline.set(deadline)
    try:
        yield deadline
    finally:
        _current_deadline.reset(token)
