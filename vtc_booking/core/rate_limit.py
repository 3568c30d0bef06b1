import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Protocol

from redis.asyncio import Redis

from vtc_booking.core.config import settings
from vtc_booking.core.metrics import rate_limit_exceeded

logger = logging.getLogger(__name__)

# ZSET sliding window: drop expired hits, refuse when full, else record this hit.
SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
if redis.call('ZCARD', key) >= limit then
    return 0
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, window)
return 1
"""


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: Optional[int] = None


class RateLimiter(Protocol):
    async def check(self, key: str) -> RateLimitDecision:
        ...


class InMemoryRateLimiter:
    """Per-key sliding window kept in process memory.

    Only valid for a single worker; the update runs without awaiting so it is
    atomic on the event loop. Keys idle for a whole window are swept at most
    once per window.
    """

    def __init__(
        self,
        limit: int = 12,
        window_seconds: float = 60,
        retry_after_seconds: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after_seconds = retry_after_seconds
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        stale = [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self.window_seconds]
        for k in stale:
            del self._hits[k]

    async def check(self, key: str) -> RateLimitDecision:
        now = self.clock()
        self._sweep(now)
        hits = self._hits.setdefault(key, deque())
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if len(hits) >= self.limit:
            rate_limit_exceeded.labels(scope="memory").inc()
            logger.warning(f"Rate limit exceeded for client {key[:12]}")
            return RateLimitDecision(allowed=False, retry_after_seconds=self.retry_after_seconds)
        hits.append(now)
        return RateLimitDecision(allowed=True)

    def reset(self) -> None:
        self._hits.clear()


class RedisRateLimiter:
    def __init__(
        self,
        redis: Redis,
        limit: int = 12,
        window_seconds: float = 60,
        retry_after_seconds: int = 30,
        prefix: str = "rl:assistant",
    ):
        self.redis = redis
        self.limit = limit
        self.window_ms = int(window_seconds * 1000)
        self.retry_after_seconds = retry_after_seconds
        self.prefix = prefix
        self._script = redis.register_script(SLIDING_WINDOW_LUA)

    async def check(self, key: str) -> RateLimitDecision:
        now_ms = int(time.time() * 1000)
        allowed = await self._script(
            keys=[f"{self.prefix}:{key}"],
            args=[now_ms, self.window_ms, self.limit, f"{now_ms}-{uuid.uuid4().hex}"],
        )
        if int(allowed) == 1:
            return RateLimitDecision(allowed=True)
        rate_limit_exceeded.labels(scope="redis").inc()
        logger.warning(f"Rate limit exceeded for client {key[:12]}")
        return RateLimitDecision(allowed=False, retry_after_seconds=self.retry_after_seconds)


def memory_limiter_from_settings() -> InMemoryRateLimiter:
    return InMemoryRateLimiter(
        limit=settings.RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW,
        retry_after_seconds=settings.RATE_LIMIT_RETRY_AFTER,
    )


def redis_limiter_from_settings(redis: Redis) -> RedisRateLimiter:
    return RedisRateLimiter(
        redis,
        limit=settings.RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW,
        retry_after_seconds=settings.RATE_LIMIT_RETRY_AFTER,
    )
