"""
Shared fixtures: an in-memory MongoDB (mongomock), Redis switched off,
and a push dispatcher that records instead of calling FCM.
"""
from datetime import datetime
from typing import Optional

import mongomock
import pytest
import redis

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.db import mongodb
from app.models.notification import MulticastResult
from app.utils.account_helpers import new_account_document


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_HOST", None)


@pytest.fixture
def db(monkeypatch):
    client = mongomock.MongoClient()
    database = client["progress_tracker_test"]
    monkeypatch.setattr(mongodb, "mongodb_client", client)
    monkeypatch.setattr(mongodb, "mongodb_db", database)
    mongodb.ensure_indexes()
    return database


class FakeDispatcher:
    """Records pushes; the first `fail_batches` multicasts raise UpstreamUnavailable"""

    def __init__(self, fail_batches: int = 0, failed_tokens: Optional[set] = None):
        self.fail_batches = fail_batches
        self.failed_tokens = failed_tokens or set()
        self.multicasts = []
        self.sent = []

    def send(self, token, title, body, data=None):
        self.sent.append({"token": token, "title": title, "body": body, "data": data})
        return f"msg-{len(self.sent)}"

    def send_multicast(self, tokens, title, body, data=None):
        if self.fail_batches:
            self.fail_batches -= 1
            raise UpstreamUnavailable("Push delivery failed: deadline exceeded")
        self.multicasts.append({"tokens": list(tokens), "title": title, "body": body, "data": data})
        failed = [token for token in tokens if token in self.failed_tokens]
        return MulticastResult(
            success_count=len(tokens) - len(failed),
            failure_count=len(failed),
            failed_tokens=failed,
        )


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def failing_dispatcher():
    """Dispatcher whose first multicast times out"""
    return FakeDispatcher(fail_batches=1)


class FakeRedis:
    """Just enough of redis.Redis for the account cache"""

    def __init__(self, broken: bool = False):
        self.store = {}
        self.broken = broken

    def _check(self):
        if self.broken:
            raise redis.ConnectionError("Connection refused")

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        return True

    def delete(self, key):
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0

    def ping(self):
        self._check()
        return True


@pytest.fixture
def fake_redis(monkeypatch):
    from app.utils import redis_utils

    client = FakeRedis()
    monkeypatch.setattr(settings, "REDIS_HOST", "redis.test")
    monkeypatch.setattr(redis_utils, "get_redis_client", lambda: client)
    # Only the cache is under test here; locks stay in-process
    monkeypatch.setattr(redis_utils, "get_account_lock", _raise_connection_error)
    return client


def _raise_connection_error(*args, **kwargs):
    raise ConnectionError("Redis locks disabled in tests")


@pytest.fixture
def make_account(db):
    """Insert an account and return its document"""
    counter = {"n": 0}

    def _make(
        subscription: Optional[dict] = None,
        notifications: Optional[dict] = None,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> dict:
        counter["n"] += 1
        uid = fields.pop("firebaseUid", f"uid-{counter['n']}")
        created_at = created_at or datetime(2025, 1, 1, 9, 0, 0)
        doc = new_account_document(
            {"uid": uid, "email": f"{uid}@example.com", "name": f"User {counter['n']}"},
            now=created_at,
        )
        if subscription:
            doc["subscription"].update(subscription)
        if notifications:
            doc["notifications"].update(notifications)
        doc.update(fields)
        doc["_id"] = db.accounts.insert_one(doc).inserted_id
        return doc

    return _make
