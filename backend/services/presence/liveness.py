"""
Short-lived "driver is reachable" signal kept in Redis.

Each heartbeat refreshes a key with a TTL; going offline deletes it. A
crashed client is detected when the key expires. Cache errors are logged
and never fail the caller: the durable presence row stays authoritative.
"""

import logging
from typing import Optional

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

_client = None


def get_redis():
    global _client
    if _client is None:
        _client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=2)
    return _client


def liveness_key(driver_id) -> str:
    return f"driver:{driver_id}:availability"


def liveness_ttl() -> int:
    return int(settings.DRIVER_PRESENCE.get("LIVENESS_TTL_SECONDS", 60))


def mark_alive(driver_id) -> bool:
    try:
        get_redis().set(liveness_key(driver_id), "1", ex=liveness_ttl())
        return True
    except redis.RedisError:
        logger.warning("Could not refresh liveness key for driver %s", driver_id, exc_info=True)
        return False


def clear_alive(driver_id) -> bool:
    try:
        get_redis().delete(liveness_key(driver_id))
        return True
    except redis.RedisError:
        logger.warning("Could not clear liveness key for driver %s", driver_id, exc_info=True)
        return False


def is_alive(driver_id) -> Optional[bool]:
    """None when the cache cannot be reached."""
    try:
        return bool(get_redis().exists(liveness_key(driver_id)))
    except redis.RedisError:
        logger.warning("Could not read liveness key for driver %s", driver_id, exc_info=True)
        return None
