# mcp_gateway/rate_limiting/limiter.py
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict, deque
from typing import Callable, Deque, Optional
from uuid import uuid4

from redis.exceptions import RedisError

from ..settings import Settings
from ..storage import AbstractKeyValueStore, KeyValueStoreUnavailableError, RedisKeyValueStore
from .keyed_lock import KeyedLock
from .models import RateLimitDecision

logger = logging.getLogger(__name__)


class RateLimiterUnavailableError(Exception):
    """Raised when the counter store cannot be consulted."""


class AbstractRateLimiter(ABC):
    """
    Per-identity sliding window limiter.

    A call at time `now` is admitted when fewer than `max_requests` earlier
    admissions fall strictly inside (now - window_seconds, now]. Denied calls
    are never recorded.
    """

    # False when a cancelled check may still be recorded by the backend
    cancel_safe: bool = True

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.time):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1.")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive.")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._locks = KeyedLock()

    async def admit(self, identity_id: str, now: Optional[float] = None) -> RateLimitDecision:
        """Decide on one call for identity_id, recording it if admitted."""
        if not identity_id:
            raise ValueError("identity_id is required for an admission check.")
        # Same-identity checks are applied one at a time, in arrival order
        async with self._locks.acquire(identity_id):
            at = self._clock() if now is None else now
            return await self._admit_serialized(identity_id, at)

    @abstractmethod
    async def _admit_serialized(self, identity_id: str, now: float) -> RateLimitDecision:
        pass

    @abstractmethod
    async def peek(self, identity_id: str, now: Optional[float] = None) -> int:
        """Number of admissions currently inside the window, without recording."""
        pass

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def _decision(self, allowed: bool, count: int, now: float) -> RateLimitDecision:
        remaining = max(0, self.max_requests - count) if allowed else 0
        return RateLimitDecision(
            allowed=allowed,
            remaining=remaining,
            reset_at=now + self.window_seconds,
            limit=self.max_requests,
        )


class InMemoryRateLimiter(AbstractRateLimiter):
    """
    Process-local limiter with a bounded identity table.

    Identities live in an LRU-ordered map capped at max_tracked_identities and
    a background task sweeps identities whose window has emptied.
    """

    def __init__(
        self,
        max_requests: int = 3,
        window_seconds: float = 1.0,
        max_tracked_identities: int = 10_000,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(max_requests, window_seconds, clock)
        if max_tracked_identities < 1:
            raise ValueError("max_tracked_identities must be at least 1.")
        self.max_tracked_identities = max_tracked_identities
        self.sweep_interval_seconds = sweep_interval_seconds
        self._requests: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._sweeper_task: Optional[asyncio.Task] = None

    @property
    def tracked_identities(self) -> int:
        return len(self._requests)

    def _prune(self, timestamps: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def _timestamps_for(self, identity_id: str) -> Deque[float]:
        timestamps = self._requests.get(identity_id)
        if timestamps is not None:
            self._requests.move_to_end(identity_id)
            return timestamps

        if len(self._requests) >= self.max_tracked_identities:
            evicted_id, _ = self._requests.popitem(last=False)
            logger.warning(
                f"Rate limiter at capacity ({self.max_tracked_identities} identities). "
                f"Evicted least recently used identity '{evicted_id}'."
            )
        timestamps = deque()
        self._requests[identity_id] = timestamps
        return timestamps

    async def _admit_serialized(self, identity_id: str, now: float) -> RateLimitDecision:
        timestamps = self._timestamps_for(identity_id)
        self._prune(timestamps, now)

        if len(timestamps) >= self.max_requests:
            logger.info(f"Rate limit exceeded for '{identity_id}': {len(timestamps)}/{self.max_requests}")
            return self._decision(False, len(timestamps), now)

        timestamps.append(now)
        return self._decision(True, len(timestamps), now)

    async def peek(self, identity_id: str, now: Optional[float] = None) -> int:
        timestamps = self._requests.get(identity_id)
        if not timestamps:
            return 0
        cutoff = (self._clock() if now is None else now) - self.window_seconds
        return sum(1 for t in timestamps if t > cutoff)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop identities with no admissions left in the window. Returns how many were dropped."""
        now = self._clock() if now is None else now
        removed = 0
        for identity_id in list(self._requests):
            timestamps = self._requests[identity_id]
            self._prune(timestamps, now)
            if not timestamps:
                del self._requests[identity_id]
                removed += 1
        if removed:
            logger.debug(f"Rate limiter sweep removed {removed} idle identities, {len(self._requests)} remain.")
        return removed

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Rate limiter sweep failed: {e}", exc_info=True)

    async def start(self) -> None:
        if self._sweeper_task is not None:
            logger.warning("Rate limiter sweeper already running. Skipping.")
            return
        self._sweeper_task = asyncio.create_task(self._sweep_forever(), name="rate-limiter-sweeper")
        logger.info(f"Rate limiter sweeper started (interval {self.sweep_interval_seconds}s).")

    async def stop(self) -> None:
        if self._sweeper_task is None:
            return
        self._sweeper_task.cancel()
        try:
            await self._sweeper_task
        except asyncio.CancelledError:
            pass
        self._sweeper_task = None
        logger.info("Rate limiter sweeper stopped.")


# Prune, count and conditionally record in one atomic step.
_SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
if count >= limit then
  return {0, count}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, math.ceil(window * 1000))
return {1, count + 1}
"""


class RedisRateLimiter(AbstractRateLimiter):
    """
    Limiter whose counters live in Redis sorted sets, shared across gateway processes.

    Once EVALSHA is on the wire the script runs to completion, so the call is
    bounded by the Redis client socket timeout rather than by cancellation.
    """

    cancel_safe = False

    KEY_PREFIX = "ratelimit:"

    def __init__(
        self,
        redis_store: RedisKeyValueStore,
        max_requests: int = 3,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(max_requests, window_seconds, clock)
        self._redis_store = redis_store
        self._script = None

    def _key(self, identity_id: str) -> str:
        return f"{self.KEY_PREFIX}{identity_id}"

    async def _admit_serialized(self, identity_id: str, now: float) -> RateLimitDecision:
        try:
            client = self._redis_store.client
            if self._script is None:
                self._script = client.register_script(_SLIDING_WINDOW_SCRIPT)
            allowed, count = await self._script(
                keys=[self._key(identity_id)],
                args=[now, self.window_seconds, self.max_requests, f"{now}:{uuid4().hex}"],
            )
        except (RedisError, KeyValueStoreUnavailableError) as e:
            raise RateLimiterUnavailableError(str(e)) from e
        if not allowed:
            logger.info(f"Rate limit exceeded for '{identity_id}': {count}/{self.max_requests}")
        return self._decision(bool(allowed), int(count), now)

    async def peek(self, identity_id: str, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        try:
            return int(await self._redis_store.client.zcount(self._key(identity_id), f"({now - self.window_seconds}", "+inf"))
        except (RedisError, KeyValueStoreUnavailableError) as e:
            raise RateLimiterUnavailableError(str(e)) from e


def create_rate_limiter(settings: Settings, kv_store: AbstractKeyValueStore) -> AbstractRateLimiter:
    """Redis-backed when the shared store is Redis, otherwise in-process."""
    if isinstance(kv_store, RedisKeyValueStore):
        return RedisRateLimiter(
            kv_store,
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        max_tracked_identities=settings.rate_limit_max_tracked_identities,
        sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
    )
