"""JSON response cache backed by Redis with a process-local fallback."""
import fnmatch
import json
import logging
import threading
import time
from functools import wraps

import redis
from flask import jsonify, make_response, request

from .redis_client import get_redis

logger = logging.getLogger(__name__)


class MemoryCache:
    """Dict-backed TTL store; entries are evicted lazily on read."""

    def __init__(self):
        self._data = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at is not None and expires_at <= time.time():
                del self._data[key]
                return None
            return value

    def set(self, key, value, ttl=None):
        with self._lock:
            self._data[key] = (time.time() + ttl if ttl else None, value)

    def delete(self, key):
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_pattern(self, pattern):
        with self._lock:
            keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._data[k]
            return len(keys)

    def clear(self):
        with self._lock:
            self._data.clear()


memory_cache = MemoryCache()


def backend_name():
    return "redis" if get_redis() is not None else "memory"


def get(key):
    client = get_redis()
    if client is not None:
        try:
            raw = client.get(key)
            return json.loads(raw) if raw is not None else None
        except (redis.RedisError, ValueError) as e:
            logger.warning("Cache get failed for %s: %s", key, e)
    return memory_cache.get(key)


def set(key, value, ttl=300):
    client = get_redis()
    if client is not None:
        try:
            client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except (redis.RedisError, TypeError) as e:
            logger.warning("Cache set failed for %s: %s", key, e)
    memory_cache.set(key, value, ttl)
    return True


def invalidate(key):
    client = get_redis()
    if client is not None:
        try:
            client.delete(key)
        except redis.RedisError as e:
            logger.warning("Cache invalidate failed for %s: %s", key, e)
    memory_cache.delete(key)


def invalidate_pattern(pattern):
    """Delete every key matching a glob pattern such as ``cache:/api/properties*``."""
    removed = 0
    client = get_redis()
    if client is not None:
        try:
            keys = list(client.scan_iter(match=pattern, count=500))
            if keys:
                removed += client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Cache pattern invalidation failed for %s: %s", pattern, e)
    removed += memory_cache.delete_pattern(pattern)
    return removed


def invalidate_user(user_id, prefixes=("/api/properties", "/api/dashboard")):
    for prefix in prefixes:
        invalidate_pattern(f"cache:{prefix}*:user:{user_id}")


def cache_key(user_id=None):
    return f"cache:{request.full_path.rstrip('?')}:user:{user_id if user_id is not None else 'anon'}"


def cached_response(ttl=300):
    """Cache successful JSON GET responses per path, query string and user."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if request.method != "GET":
                return fn(*args, **kwargs)

            from ..security.auth import current_user_id

            key = cache_key(current_user_id())
            hit = get(key)
            if hit is not None:
                resp = make_response(jsonify(hit), 200)
                resp.headers["X-Cache"] = "HIT"
                return resp

            resp = make_response(fn(*args, **kwargs))
            if 200 <= resp.status_code < 300 and resp.is_json:
                set(key, resp.get_json(), ttl)
                resp.headers["X-Cache"] = "MISS"
            return resp

        return wrapper

    return decorator
