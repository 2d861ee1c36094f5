import json
import logging
import os
import time
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL")
LIST_CACHE_TTL_SECONDS = int(os.getenv("LIST_CACHE_TTL_SECONDS", "60"))
REDIS_CONNECT_TIMEOUT_SECONDS = float(os.getenv("REDIS_CONNECT_TIMEOUT_SECONDS", "0.5"))
REDIS_RETRY_SECONDS = int(os.getenv("REDIS_RETRY_SECONDS", "30"))

_redis_client: Optional[redis.Redis] = None
_redis_retry_at: float = 0.0


def get_redis_client() -> Optional[redis.Redis]:
    """
    Return a Redis client when REDIS_URL is configured, otherwise None.

    Caching is best-effort: an unreachable server disables it for
    REDIS_RETRY_SECONDS and every read falls through to the store.
    """
    global _redis_client, _redis_retry_at

    if _redis_client is not None:
        return _redis_client
    if not REDIS_URL or time.monotonic() < _redis_retry_at:
        return None

    try:
        client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=REDIS_CONNECT_TIMEOUT_SECONDS,
        )
        client.ping()
    except redis.RedisError:
        _redis_retry_at = time.monotonic() + REDIS_RETRY_SECONDS
        logger.warning(
            "Redis at %s is not reachable; list caching disabled for %ds",
            REDIS_URL,
            REDIS_RETRY_SECONDS,
        )
        return None

    _redis_client = client
    return _redis_client


def get_cached_json(key: str) -> Optional[Any]:
    client = get_redis_client()
    if client is None:
        return None
    try:
        raw = client.get(key)
    except redis.RedisError:
        logger.warning("Cache read failed for %s", key)
        return None
    return json.loads(raw) if raw is not None else None


def set_cached_json(key: str, value: Any, ttl_seconds: int = LIST_CACHE_TTL_SECONDS) -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(key, ttl_seconds, json.dumps(value, default=str))
    except redis.RedisError:
        logger.warning("Cache write failed for %s", key)


def listing_key(namespace: str) -> str:
    """
    Key of the cached listing for ``namespace`` at its current generation.

    A reader that loaded data before an invalidation writes under the old
    generation, which nobody reads again.
    """
    client = get_redis_client()
    if client is None:
        return f"{namespace}:all:0"
    try:
        generation = client.get(f"{namespace}:generation")
    except redis.RedisError:
        logger.warning("Cache generation read failed for %s", namespace)
        generation = None
    return f"{namespace}:all:{int(generation or 0)}"


def invalidate(namespace: str) -> None:
    """
    Bump the generation of ``namespace`` (e.g. 'bookings') and drop its
    cached listings.
    """
    client = get_redis_client()
    if client is None:
        return
    try:
        client.incr(f"{namespace}:generation")
        for key in client.scan_iter(f"{namespace}:all:*"):
            client.delete(key)
    except redis.RedisError:
        logger.warning("Cache invalidation failed for %s", namespace)
