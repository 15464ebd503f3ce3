"""Fixed-window request rate limiting keyed by client address."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from fastapi import Request
from redis import asyncio as aioredis

from ..utils.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in: int


class RateLimiter(Protocol):
    async def hit(self, identifier: str) -> RateLimitDecision:
        ...

    async def close(self) -> None:
        ...


class MemoryRateLimiter:
    """Per-process counters; correct only for single-instance deployments."""

    def __init__(
        self,
        *,
        limit: int = 15,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, identifier: str) -> RateLimitDecision:
        async with self._lock:
            now = self._clock()
            started, count = self._windows.get(identifier, (now, 0))
            if now - started >= self._window:
                started, count = now, 0
            count += 1
            self._windows[identifier] = (started, count)
            if len(self._windows) > 10_000:
                self._evict(now)

        reset_in = max(0, math.ceil(started + self._window - now))
        return RateLimitDecision(
            allowed=count <= self._limit,
            remaining=max(0, self._limit - count),
            reset_in=reset_in,
        )

    def _evict(self, now: float) -> None:
        for key in [k for k, (started, _) in self._windows.items() if now - started >= self._window]:
            del self._windows[key]

    async def close(self) -> None:
        return None


class RedisRateLimiter:
    """Shared counters using ``INCR`` with a window-length expiry."""

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        limit: int = 15,
        window_seconds: int = 60,
        prefix: str = "ratelimit",
    ) -> None:
        self._redis = client
        self._limit = limit
        self._window = window_seconds
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisRateLimiter":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, **kwargs)

    async def hit(self, identifier: str) -> RateLimitDecision:
        key = f"{self._prefix}:{identifier}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, self._window, nx=True)
            pipe.ttl(key)
            count, _, ttl = await pipe.execute()
        reset_in = int(ttl) if ttl and ttl > 0 else self._window
        return RateLimitDecision(
            allowed=int(count) <= self._limit,
            remaining=max(0, self._limit - int(count)),
            reset_in=reset_in,
        )

    async def close(self) -> None:
        await self._redis.aclose()


def client_identifier(request: Request) -> str:
    """Return the caller's network address, honouring ``X-Forwarded-For``."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def enforce_rate_limit(request: Request) -> RateLimitDecision:
    """FastAPI dependency rejecting callers over their request budget."""

    limiter: RateLimiter = request.app.state.services.rate_limiter
    identifier = client_identifier(request)
    decision = await limiter.hit(identifier)
    if not decision.allowed:
        logger.info("Rate limit exceeded for %s (reset in %ss)", identifier, decision.reset_in)
        raise RateLimitExceededError(decision.reset_in)
    return decision


__all__ = [
    "MemoryRateLimiter",
    "RateLimitDecision",
    "RateLimiter",
    "RedisRateLimiter",
    "client_identifier",
    "enforce_rate_limit",
]
