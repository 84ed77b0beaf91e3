"""Fixed-window admission control keyed by (operation, identity).

The in-memory limiter is per process: in a horizontally scaled deployment
each instance counts on its own. Use the Redis-backed limiter when the limit
has to hold across instances; both share the same interface.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

from slovo.cache import cache_delete, incr_window_counter
from slovo.config import Config

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    async def allow(self, operation: str, identity: str) -> bool:
        ...

    async def reset(self, operation: str, identity: str) -> None:
        ...


@dataclass
class _Window:
    count: int
    expires_at: float


class InMemoryRateLimiter:
    """Allow up to ``max_requests`` per ``window_ms`` for each key."""

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ) -> None:
        self.max_requests = Config.RATE_LIMIT_MAX_REQUESTS if max_requests is None else max_requests
        self.window_ms = Config.RATE_LIMIT_WINDOW_MS if window_ms is None else window_ms
        self._clock = clock
        self._max_keys = max_keys
        self._windows: Dict[Tuple[str, str], _Window] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if window.expires_at <= now]
        for key in expired:
            del self._windows[key]

    def hit(self, operation: str, identity: str) -> bool:
        now = self._now_ms()
        key = (operation, identity)
        window = self._windows.get(key)

        if window is None or window.expires_at <= now:
            if len(self._windows) >= self._max_keys:
                self._prune(now)
            self._windows[key] = _Window(count=1, expires_at=now + self.window_ms)
            return True

        if window.count >= self.max_requests:
            logger.warning(f"Rate limit exceeded for {operation}:{identity}")
            return False

        window.count += 1
        return True

    async def allow(self, operation: str, identity: str) -> bool:
        return self.hit(operation, identity)

    async def reset(self, operation: str, identity: str) -> None:
        self._windows.pop((operation, identity), None)


class RedisRateLimiter:
    """Same contract, counters kept in Redis so all instances share them."""

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_ms: Optional[int] = None,
        prefix: str = "ratelimit",
        client=None,
    ) -> None:
        self.max_requests = Config.RATE_LIMIT_MAX_REQUESTS if max_requests is None else max_requests
        self.window_ms = Config.RATE_LIMIT_WINDOW_MS if window_ms is None else window_ms
        self._prefix = prefix
        self._client = client

    def _key(self, operation: str, identity: str) -> str:
        return f"{self._prefix}:{operation}:{identity}"

    async def allow(self, operation: str, identity: str) -> bool:
        count = await incr_window_counter(self._key(operation, identity), self.window_ms, client=self._client)
        if count is None:
            # advisory limiter: stay open while Redis is unreachable
            return True
        if count > self.max_requests:
            logger.warning(f"Rate limit exceeded for {operation}:{identity}")
            return False
        return True

    async def reset(self, operation: str, identity: str) -> None:
        if self._client is not None:
            await self._client.delete(self._key(operation, identity))
            return
        await cache_delete(self._key(operation, identity))


def build_rate_limiter(backend: Optional[str] = None) -> RateLimiter:
    """Return the limiter selected by configuration."""
    backend = backend or Config.RATE_LIMIT_BACKEND
    if backend == "redis":
        return RedisRateLimiter()
    return InMemoryRateLimiter()


__all__ = ["RateLimiter", "InMemoryRateLimiter", "RedisRateLimiter", "build_rate_limiter"]
