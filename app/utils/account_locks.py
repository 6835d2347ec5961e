"""
Per-account serialization for entitlement writes.

Webhook handlers and promo redemptions for the same account must not
interleave. Inside one process a keyed threading lock orders them; when
Redis is configured a redis-py lock on "lock:account:{id}" orders them
across workers as well.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Optional

import redis

from app.core.config import settings
from app.core.exceptions import ConcurrencyConflict
from app.utils import redis_utils

logger = logging.getLogger(__name__)


class KeyedLock:
    """A lock per key, created on demand and dropped when nobody holds or waits on it"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refcounts: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._refcounts[key] = 0
            self._refcounts[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None):
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(timeout=timeout if timeout is not None else -1)
            if not acquired:
                raise ConcurrencyConflict("Account is busy, please retry")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


_local_locks = KeyedLock()


@contextmanager
def account_lock(account_id: str):
    """
    Hold the lock for one account id.

    Raises:
        ConcurrencyConflict: If the lock could not be acquired within
            ACCOUNT_LOCK_TIMEOUT_SECONDS
    """
    timeout = settings.ACCOUNT_LOCK_TIMEOUT_SECONDS
    with _local_locks.hold(account_id, timeout=timeout):
        if not redis_utils.is_redis_configured():
            yield
            return

        try:
            distributed = redis_utils.get_account_lock(account_id, timeout=timeout)
            acquired = distributed.acquire()
        except (ConnectionError, redis.RedisError) as e:
            logger.warning(f"Distributed lock unavailable for account {account_id}, using local lock only: {e}")
            yield
            return

        if not acquired:
            raise ConcurrencyConflict("Account is busy, please retry")
        try:
            yield
        finally:
            try:
                distributed.release()
            except redis.exceptions.LockError as e:
                # Expired while held; the next writer already owns it
                logger.warning(f"Lock for account {account_id} expired before release: {e}")
