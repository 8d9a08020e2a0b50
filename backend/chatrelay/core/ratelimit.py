"""Advisory fixed-window rate limiting.

Counts live behind ``CounterStore`` so the in-process dictionary can be
replaced by a shared backend without touching the handlers. The in-memory
store is reset on restart and is not meant as a security boundary.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

from fastapi import Depends, Request

from chatrelay.core.config import settings
from chatrelay.core.errors import RequestError


class CounterStore(ABC):
    @abstractmethod
    def increment(self, key: str, window: int) -> int:
        """Increment the counter for ``key`` in ``window`` and return the new count."""
        ...


class InMemoryCounterStore(CounterStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._window: int | None = None
        self._counts: dict[str, int] = {}

    def increment(self, key: str, window: int) -> int:
        with self._lock:
            if window != self._window:
                # Older windows can never be hit again.
                self._window = window
                self._counts = {}
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]


class RateLimiter:
    def __init__(
        self,
        store: CounterStore,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock

    def hit(self, key: str) -> bool:
        """Record one request for ``key``; False once the window's limit is exceeded."""
        window = int(self._clock() // self._window_seconds)
        return self._store.increment(key, window) <= self._limit


_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter(
            InMemoryCounterStore(),
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _limiter


async def enforce_rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    client = request.client.host if request.client else "anonymous"
    if not limiter.hit(f"{client}:{request.url.path}"):
        raise RequestError("Too many requests. Please wait a moment.", status_code=429)
