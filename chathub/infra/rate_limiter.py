"""Per-sender admission control for inbound chat events."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

from chathub.infra.config import config

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Capability interface: ``admit`` answers whether a sender may proceed."""

    @abstractmethod
    def admit(self, sender_id: str) -> bool:
        """Count one event for the sender and report whether it is admitted."""

    def remaining(self, sender_id: str) -> int:
        """Events the sender may still emit in the current window."""
        return 0

    def reset_in(self, sender_id: str) -> float:
        """Seconds until the sender's current window closes."""
        return 0.0

    def purge_expired(self) -> int:
        """Drop state for senders whose window has lapsed. Returns entries removed."""
        return 0


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter(RateLimiter):
    """
    Fixed-capacity window per sender, held in process memory.

    State is not persisted and not shared between processes, so a restart
    resets every sender and each instance enforces its own limit.
    """

    def __init__(
        self,
        capacity: int = 30,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def admit(self, sender_id: str) -> bool:
        now = self._clock()
        window = self._windows.get(sender_id)
        if window is None:
            window = _Window(count=0, reset_at=now + self.window_seconds)
            self._windows[sender_id] = window

        if now > window.reset_at:
            window.count = 0
            window.reset_at = now + self.window_seconds

        window.count += 1
        return window.count <= self.capacity

    def remaining(self, sender_id: str) -> int:
        window = self._windows.get(sender_id)
        if window is None or self._clock() > window.reset_at:
            return self.capacity
        return max(0, self.capacity - window.count)

    def reset_in(self, sender_id: str) -> float:
        window = self._windows.get(sender_id)
        if window is None:
            return 0.0
        return max(0.0, window.reset_at - self._clock())

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [sender for sender, window in self._windows.items() if now > window.reset_at]
        for sender in expired:
            del self._windows[sender]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


class RedisRateLimiter(RateLimiter):
    """
    Same fixed-window policy backed by Redis so every instance shares counts.

    Falls back to an in-process limiter while Redis is unreachable.
    """

    def __init__(
        self,
        client: "redis.Redis",
        capacity: int = 30,
        window_seconds: int = 60,
        fallback: Optional[RateLimiter] = None,
    ):
        self.client = client
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.fallback = fallback if fallback is not None else InMemoryRateLimiter(capacity, window_seconds)

    def _key(self, sender_id: str) -> str:
        return f"ratelimit:chat:{sender_id}"

    def admit(self, sender_id: str) -> bool:
        key = self._key(sender_id)
        try:
            count = self.client.incr(key)
            if count == 1:
                # First event opens the window
                self.client.expire(key, self.window_seconds)
        except redis.RedisError as e:
            logger.warning(f"Redis rate limiter unavailable, using in-memory fallback: {e}")
            return self.fallback.admit(sender_id)
        return count <= self.capacity

    def remaining(self, sender_id: str) -> int:
        try:
            count = int(self.client.get(self._key(sender_id)) or 0)
        except redis.RedisError:
            return self.fallback.remaining(sender_id)
        return max(0, self.capacity - count)

    def reset_in(self, sender_id: str) -> float:
        try:
            ttl = self.client.ttl(self._key(sender_id))
        except redis.RedisError:
            return self.fallback.reset_in(sender_id)
        # -2: no key, -1: key without expiry
        if ttl == -2:
            return 0.0
        return float(ttl if ttl >= 0 else self.window_seconds)

    def purge_expired(self) -> int:
        # Redis expires keys itself; only the fallback needs sweeping
        return self.fallback.purge_expired()


def build_rate_limiter() -> RateLimiter:
    """Create the limiter selected by RATE_LIMIT_BACKEND."""
    if config.RATE_LIMIT_BACKEND == "redis":
        client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
        return RedisRateLimiter(
            client,
            capacity=config.RATE_LIMIT_CAPACITY,
            window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
        )
    return InMemoryRateLimiter(
        capacity=config.RATE_LIMIT_CAPACITY,
        window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
    )


async def sweep_expired_windows(limiter: RateLimiter, interval_seconds: float) -> None:
    """Periodically purge lapsed sender windows to bound memory."""
    while True:
        await asyncio.sleep(interval_seconds)
        purged = limiter.purge_expired()
        if purged:
            logger.debug("Purged expired rate limit windows", extra={"purged": purged})


def get_rate_limit_headers(limiter: RateLimiter, sender_id: str) -> Dict[str, str]:
    """X-RateLimit-* headers for a REST response."""
    return {
        "X-RateLimit-Limit": str(getattr(limiter, "capacity", 0)),
        "X-RateLimit-Remaining": str(limiter.remaining(sender_id)),
    }
