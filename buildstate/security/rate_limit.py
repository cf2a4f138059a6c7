"""
Fixed-window rate limiting.

Counters live in Redis (INCR + EXPIRE per window) when REDIS_URL is reachable
and in a process-local dictionary otherwise. Redis failures during a request
degrade to the in-memory counters rather than rejecting traffic.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Optional

import redis
from flask import request

from ..errors import ApiError, ErrorCodes
from ..services.redis_client import get_redis

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds when the current window closes

    @property
    def retry_after(self) -> int:
        return max(1, self.reset_at - int(time.time()))


class MemoryStore:
    def __init__(self):
        self._counts: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def incr(self, key: str, window: int, now: float) -> int:
        with self._lock:
            count, expires_at = self._counts.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + window
            count += 1
            self._counts[key] = (count, expires_at)
            if len(self._counts) > 10000:
                self._sweep(now)
            return count

    def _sweep(self, now: float) -> None:
        for k in [k for k, (_, exp) in self._counts.items() if exp <= now]:
            del self._counts[k]

    def clear(self) -> None:
        with self._lock:
            self._counts.clear()


memory_store = MemoryStore()


class RateLimiter:
    def __init__(self, key_prefix: str, points: int, duration: int):
        self.key_prefix = key_prefix
        self.points = int(points)
        self.duration = int(duration)

    def _window(self, now: float) -> int:
        return int(now) - (int(now) % self.duration)

    def consume(self, key: Optional[str], now: Optional[float] = None) -> RateLimitResult:
        now = time.time() if now is None else now
        window_start = self._window(now)
        reset_at = window_start + self.duration
        if not key:
            return RateLimitResult(True, self.points, self.points, reset_at)

        full_key = f"rl:{self.key_prefix}:{key}:{window_start}"
        count = None
        client = get_redis()
        if client is not None:
            try:
                count = client.incr(full_key)
                if count == 1:
                    client.expire(full_key, self.duration + 1)
            except redis.RedisError as e:
                logger.warning("Rate limiter Redis error, falling back to memory: %s", e)
                count = None
        if count is None:
            count = memory_store.incr(full_key, self.duration, now)

        remaining = max(0, self.points - count)
        return RateLimitResult(count <= self.points, self.points, remaining, reset_at)


def _client_ip() -> str:
    return request.remote_addr or "unknown"


def _user_key() -> Optional[str]:
    from .auth import current_user_id

    uid = current_user_id()
    return f"user:{uid}" if uid is not None else None


def rate_limit(limiter: RateLimiter, key_func: Callable[[], Optional[str]] = _user_key):
    """Decorator rejecting calls over the limiter's budget with 429 and standard headers."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            result = limiter.consume(key_func())
            if not result.allowed:
                logger.info("Rate limit exceeded for %s on %s", limiter.key_prefix, request.path)
                raise ApiError(
                    429,
                    "Too many requests. Please try again later.",
                    ErrorCodes.RATE_LIMIT_EXCEEDED,
                    {"retry_after": result.retry_after},
                    headers={
                        "Retry-After": str(result.retry_after),
                        "X-RateLimit-Limit": str(result.limit),
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Reset": str(result.reset_at),
                    },
                )
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def ip_key() -> str:
    return f"ip:{_client_ip()}"


def session_or_ip_key() -> str:
    body = request.get_json(silent=True) or {}
    session_id = body.get("session_id") if isinstance(body, dict) else None
    return f"session:{session_id}" if session_id else ip_key()


upload_limiter = RateLimiter("upload", 500, 60)
api_limiter = RateLimiter("api", 100, 60)
strict_limiter = RateLimiter("strict", 10, 60)
public_limiter = RateLimiter("public", 30, 60)
login_limiter = RateLimiter("login", 10, 60)
