"""
Redis utilities for the account cache and distributed account locks
"""
import logging
import os
from typing import Optional, Dict, Any

import redis
from bson import json_util

from app.core.config import settings

logger = logging.getLogger(__name__)

# Redis log lines are tagged, and colored on a terminal
SUPPORTS_COLOR = os.getenv("TERM") is not None and os.getenv("NO_COLOR") is None

REDIS_INFO_COLOR = "\033[96m[REDIS]\033[0m " if SUPPORTS_COLOR else "[REDIS] "
REDIS_WARN_COLOR = "\033[93m[REDIS WARN]\033[0m " if SUPPORTS_COLOR else "[REDIS WARN] "
REDIS_ERROR_COLOR = "\033[91m[REDIS ERROR]\033[0m " if SUPPORTS_COLOR else "[REDIS ERROR] "

ACCOUNT_CACHE_PREFIX = "account:"
ACCOUNT_LOCK_PREFIX = "lock:account:"

# Cached documents hold naive UTC datetimes, same as pymongo returns them
CACHE_JSON_OPTIONS = json_util.JSONOptions(tz_aware=False)


def _redis_log_info(message: str) -> None:
    logger.info(f"{REDIS_INFO_COLOR}{message}")


def _redis_log_warning(message: str) -> None:
    logger.warning(f"{REDIS_WARN_COLOR}{message}")


def _redis_log_error(message: str) -> None:
    logger.error(f"{REDIS_ERROR_COLOR}{message}")


# Created by get_redis_client()
_redis_client: Optional[redis.Redis] = None


def is_redis_configured() -> bool:
    return bool(settings.REDIS_HOST)


def _connection_kwargs() -> Dict[str, Any]:
    """redis.Redis keyword arguments built from settings"""
    kwargs: Dict[str, Any] = {
        "host": settings.REDIS_HOST,
        "port": settings.REDIS_PORT,
        "db": settings.REDIS_DB,
        "decode_responses": True,
        "socket_connect_timeout": 5,
        "socket_timeout": 5,
    }
    if settings.REDIS_PASSWORD:
        kwargs["password"] = settings.REDIS_PASSWORD
        # ACL user only applies together with a password
        if settings.REDIS_USERNAME:
            kwargs["username"] = settings.REDIS_USERNAME
    if settings.REDIS_SSL:
        kwargs.update(ssl=True, ssl_cert_reqs="required")
    return kwargs


def get_redis_client() -> redis.Redis:
    """
    Shared Redis client, connected and pinged on first use

    Raises:
        ConnectionError: If REDIS_HOST is unset or the first ping fails
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client
    if not is_redis_configured():
        raise ConnectionError("Redis host not configured. Set REDIS_HOST in environment variables.")

    client = redis.Redis(**_connection_kwargs())
    try:
        client.ping()
    except redis.RedisError as e:
        _redis_log_error(f"✗ Failed to connect to Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}: {e}")
        raise ConnectionError(f"Redis connection failed: {e}")

    _redis_client = client
    _redis_log_info(f"✓ Connected to Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    return _redis_client


def is_redis_available() -> bool:
    """
    Check if Redis is available and connected

    Returns:
        True if Redis is available, False otherwise
    """
    if not is_redis_configured():
        return False
    try:
        get_redis_client().ping()
        return True
    except (ConnectionError, redis.RedisError) as e:
        _redis_log_warning(f"Redis not available: {e}")
        return False


def get_cached_account(firebase_uid: str) -> Optional[Dict[str, Any]]:
    """
    Read an account document from the cache.

    Any Redis failure is treated as a miss; the caller falls through to MongoDB.
    """
    if not is_redis_configured():
        return None
    key = f"{ACCOUNT_CACHE_PREFIX}{firebase_uid}"
    try:
        data_json = get_redis_client().get(key)
    except (ConnectionError, redis.RedisError) as e:
        _redis_log_warning(f"Cache read failed for {key}, treating as miss: {e}")
        return None

    if not data_json:
        return None
    try:
        return json_util.loads(data_json, json_options=CACHE_JSON_OPTIONS)
    except ValueError as e:
        _redis_log_error(f"✗ Error parsing cached account {key}: {e}")
        return None


def cache_account(account_doc: Dict[str, Any], ttl_seconds: Optional[int] = None) -> bool:
    """
    Store an account document keyed by its firebaseUid

    Returns:
        True if stored, False if Redis is not configured or the write failed
    """
    if not is_redis_configured():
        return False
    ttl = ttl_seconds or settings.ACCOUNT_CACHE_TTL_SECONDS
    key = f"{ACCOUNT_CACHE_PREFIX}{account_doc['firebaseUid']}"
    try:
        get_redis_client().setex(key, ttl, json_util.dumps(account_doc, json_options=CACHE_JSON_OPTIONS))
        return True
    except (ConnectionError, redis.RedisError) as e:
        _redis_log_warning(f"Cache write failed for {key}: {e}")
        return False


def invalidate_account_cache(firebase_uid: Optional[str]) -> bool:
    """
    Delete the cached account entry

    Returns:
        True if an entry was deleted
    """
    if not firebase_uid or not is_redis_configured():
        return False
    key = f"{ACCOUNT_CACHE_PREFIX}{firebase_uid}"
    try:
        deleted = get_redis_client().delete(key)
    except (ConnectionError, redis.RedisError) as e:
        _redis_log_error(f"✗ Cache invalidation failed for {key}: {e}")
        return False
    if deleted:
        _redis_log_info(f"✓ Invalidated cached account {key}")
    return deleted > 0


def get_account_lock(account_id: str, timeout: Optional[int] = None):
    """
    Distributed lock for one account id (redis-py Lock).

    The lock expires after `timeout` seconds so a crashed holder cannot block
    the account forever.
    """
    timeout = timeout or settings.ACCOUNT_LOCK_TIMEOUT_SECONDS
    return get_redis_client().lock(
        f"{ACCOUNT_LOCK_PREFIX}{account_id}",
        timeout=timeout,
        blocking_timeout=timeout,
    )
