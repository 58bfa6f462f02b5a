"""Rate Limiter for drip.

Features:
- Fixed-window request counters per key
- Atomic hit (count-and-compare) so concurrent bursts cannot over-admit
- Release of a counted request when the response failed
- Redis storage in production, in-memory fallback for development
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

GLOBAL_KEY = "GLOBAL"


def _format_retry(window_minutes: int) -> str:
    """Format the rejection message for user display."""
    return f"Too many requests. Please try again after {window_minutes} minutes"


def identity_key(body: dict[str, Any]) -> str | None:
    """Derive the per-identity key from a request body.

    Parameters
    ----------
    body : dict[str, Any]
        Parsed request body.

    Returns
    -------
    str | None
        The uppercased address, or None when the address is missing, empty or
        not a string.
    """
    address = body.get("address")
    if isinstance(address, str) and address:
        return address.upper()
    return None


@dataclass
class RateLimitResult:
    """Result of a rate limit hit."""

    allowed: bool
    remaining: int  # Remaining requests in the current window
    retry_after_seconds: int | None  # Seconds until the window resets
    reason: str | None  # Rejection reason if not allowed


class RateLimiter:
    """Fixed-window rate limiter.

    Uses Redis for persistence in production, with in-memory fallback
    for development/testing.

    Parameters
    ----------
    name : str
        Limiter name, used to namespace keys.
    max_limit : int
        Maximum requests per key per window.
    window_minutes : int
        Window length in minutes.
    redis_url : str | None
        Redis connection URL. If None, uses in-memory storage.
    """

    def __init__(
        self,
        name: str,
        max_limit: int,
        window_minutes: int,
        redis_url: str | None = None,
    ):
        self._name = name
        self._max_limit = max_limit
        self._window_minutes = window_minutes
        self._window_seconds = window_minutes * 60
        self._redis = None  # Redis instance or None

        # In-memory fallback storage: key -> [count, window_reset_at]
        self._memory_buckets: dict[str, list[float]] = {}

        if redis_url:
            self._init_redis(redis_url)

    def _init_redis(self, redis_url: str) -> None:
        """Initialize Redis connection."""
        try:
            from redis import Redis

            self._redis = Redis.from_url(redis_url, decode_responses=True)
            self._redis.ping()
            logger.info(
                "Redis connected for rate limiting",
                extra={"limiter": self._name, "url": redis_url},
            )
        except Exception as e:
            logger.warning(
                "Redis connection failed, using in-memory rate limiting",
                extra={"limiter": self._name, "error": str(e)},
            )
            self._redis = None

    @property
    def name(self) -> str:
        """Limiter name."""
        return self._name

    @property
    def max_limit(self) -> int:
        """Maximum requests per window."""
        return self._max_limit

    def _get_key(self, key: str) -> str:
        """Get Redis key for a bucket."""
        return f"drip:ratelimit:{self._name}:{key}"

    async def hit(self, key: str) -> RateLimitResult:
        """Count a request against ``key`` if it is under the threshold.

        A rejected request leaves the bucket unchanged.

        Parameters
        ----------
        key : str
            Derived bucket key (constant, IP, or address).

        Returns
        -------
        RateLimitResult
            Whether the request is admitted.
        """
        if self._redis:
            return self._hit_redis(key)
        return self._hit_memory(key)

    def _reject(self, retry_after: int) -> RateLimitResult:
        return RateLimitResult(
            allowed=False,
            remaining=0,
            retry_after_seconds=retry_after,
            reason=_format_retry(self._window_minutes),
        )

    def _hit_redis(self, key: str) -> RateLimitResult:
        """Hit using Redis; INCR is the atomic step."""
        redis_key = self._get_key(key)

        pipe = self._redis.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self._window_seconds, nx=True)
        pipe.ttl(redis_key)
        count, _, ttl = pipe.execute()
        count = int(count)
        retry_after = int(ttl) if ttl and int(ttl) > 0 else self._window_seconds

        if count > self._max_limit:
            # Undo the over-limit increment so rejections do not count
            self._redis.decr(redis_key)
            return self._reject(retry_after)

        return RateLimitResult(
            allowed=True,
            remaining=self._max_limit - count,
            retry_after_seconds=None,
            reason=None,
        )

    def _hit_memory(self, key: str) -> RateLimitResult:
        """Hit using in-memory storage. No await between check and increment."""
        now = time.time()
        bucket = self._memory_buckets.get(key)
        if bucket is None or bucket[1] <= now:
            bucket = [0, now + self._window_seconds]
            self._memory_buckets[key] = bucket

        if bucket[0] >= self._max_limit:
            return self._reject(max(1, int(bucket[1] - now)))

        bucket[0] += 1
        self._cleanup_memory(now)
        return RateLimitResult(
            allowed=True,
            remaining=self._max_limit - int(bucket[0]),
            retry_after_seconds=None,
            reason=None,
        )

    def _cleanup_memory(self, now: float) -> None:
        """Drop expired buckets."""
        expired = [k for k, (_, reset_at) in self._memory_buckets.items() if reset_at <= now]
        for k in expired:
            del self._memory_buckets[k]

    async def release(self, key: str) -> None:
        """Give back one counted request (used when the response failed).

        Parameters
        ----------
        key : str
            Bucket key that was hit.
        """
        if self._redis:
            redis_key = self._get_key(key)
            if int(self._redis.decr(redis_key)) < 0:
                self._redis.set(redis_key, 0, keepttl=True)
        else:
            bucket = self._memory_buckets.get(key)
            if bucket is not None and bucket[0] > 0:
                bucket[0] -= 1

        logger.debug(
            "Rate limit released",
            extra={"limiter": self._name, "key": key},
        )

    async def get_remaining(self, key: str) -> int:
        """Get remaining requests in the current window without counting one.

        Parameters
        ----------
        key : str
            Bucket key.
        """
        if self._redis:
            count = int(self._redis.get(self._get_key(key)) or 0)
        else:
            bucket = self._memory_buckets.get(key)
            count = 0 if bucket is None or bucket[1] <= time.time() else int(bucket[0])
        return max(0, self._max_limit - count)

    def reset_key(self, key: str) -> None:
        """Reset a bucket (admin function).

        Parameters
        ----------
        key : str
            Bucket key.
        """
        if self._redis:
            self._redis.delete(self._get_key(key))
        else:
            self._memory_buckets.pop(key, None)

        logger.info("Rate limit reset", extra={"limiter": self._name, "key": key})
