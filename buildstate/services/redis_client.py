import logging

import redis
from flask import current_app

logger = logging.getLogger(__name__)

_clients = {}


def get_redis():
    """Return a connected Redis client for REDIS_URL, or None when Redis is not configured/reachable.

    Connection attempts are cached per URL; a failed ping is remembered so that
    requests do not pay a connection timeout each time.
    """
    url = current_app.config.get("REDIS_URL")
    if not url:
        return None
    if url in _clients:
        return _clients[url]
    try:
        client = redis.Redis.from_url(url, socket_connect_timeout=2, socket_timeout=2, decode_responses=True)
        client.ping()
        logger.info("Connected to Redis")
    except redis.RedisError as e:
        logger.warning("Redis unavailable, using in-memory fallback: %s", e)
        client = None
    _clients[url] = client
    return client


def reset_redis():
    _clients.clear()
