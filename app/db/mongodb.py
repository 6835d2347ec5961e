"""
MongoDB client lifecycle, collection access and indexes
"""
import re
import logging
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, ConfigurationError, PyMongoError
from typing import Optional

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)

ACCOUNTS_COLLECTION = "accounts"
PROMO_CODES_COLLECTION = "promo_codes"
PROGRESS_COLLECTION = "progress"
LOGS_COLLECTION = "logs"

URI_DB_NAME = re.compile(r"mongodb(?:\+srv)?://[^/]+/([^?]+)")

# Module-level client and database, set by connect_to_mongodb()
mongodb_client: Optional[MongoClient] = None
mongodb_db = None


def _database_name(uri: str) -> str:
    match = URI_DB_NAME.search(uri)
    return match.group(1) if match else settings.MONGODB_DB_NAME


def connect_to_mongodb() -> bool:
    """
    Open the client, verify it with a ping and create indexes.

    Returns:
        True on success; False (and no client) when MONGODB_URI is missing
        or the server cannot be reached
    """
    global mongodb_client, mongodb_db

    if not settings.MONGODB_URI:
        logger.warning("MONGODB_URI not set. MongoDB connection will not be established.")
        return False

    try:
        client = MongoClient(
            settings.MONGODB_URI,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=10000,
        )
        client.admin.command("ping")
    except (ConnectionFailure, ConfigurationError) as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        return False
    except PyMongoError as e:
        logger.error(f"Unexpected error connecting to MongoDB: {e}")
        return False

    db_name = _database_name(settings.MONGODB_URI)
    mongodb_client = client
    mongodb_db = client[db_name]
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.error(f"Index creation failed on '{db_name}': {e}")

    logger.info(f"Connected to MongoDB database '{db_name}'")
    return True


def ensure_indexes() -> None:
    """Create the indexes the services rely on (idempotent)"""
    if mongodb_db is None:
        return

    accounts = mongodb_db[ACCOUNTS_COLLECTION]
    accounts.create_index("firebaseUid", unique=True)
    accounts.create_index("subscription.stripeCustomerId", sparse=True)
    accounts.create_index("subscription.status")
    accounts.create_index("subscription.trialEndsAt")
    accounts.create_index([("notifications.reminderTimes", ASCENDING), ("isActive", ASCENDING)])

    promo_codes = mongodb_db[PROMO_CODES_COLLECTION]
    promo_codes.create_index("code", unique=True)
    promo_codes.create_index([("isActive", ASCENDING), ("validFrom", ASCENDING), ("validUntil", ASCENDING)])
    promo_codes.create_index([("createdAt", DESCENDING)])

    progress = mongodb_db[PROGRESS_COLLECTION]
    progress.create_index([("accountId", ASCENDING), ("date", ASCENDING)], unique=True)

    logs = mongodb_db[LOGS_COLLECTION]
    logs.create_index([("type", ASCENDING), ("createdAt", DESCENDING)])
    logs.create_index("accountId")


def close_mongodb_connection() -> None:
    global mongodb_client, mongodb_db

    if mongodb_client is None:
        return
    client, mongodb_client, mongodb_db = mongodb_client, None, None
    try:
        client.close()
    except PyMongoError as e:
        logger.debug(f"MongoDB close error (non-critical): {e}")
    logger.info("MongoDB connection closed")


def get_database():
    return mongodb_db


def get_collection(collection_name: str):
    """
    Collection by name

    Returns:
        The collection, or None if connect_to_mongodb() has not succeeded
    """
    if mongodb_db is None:
        logger.error(f"MongoDB not initialized; cannot access '{collection_name}'")
        return None
    return mongodb_db[collection_name]


def require_collection(collection_name: str):
    """Like get_collection, but raises UpstreamUnavailable when the database is down"""
    collection = get_collection(collection_name)
    if collection is None:
        raise UpstreamUnavailable("Database connection unavailable")
    return collection


def is_connected() -> bool:
    """True if the client answers a ping"""
    if mongodb_client is None:
        return False
    try:
        mongodb_client.admin.command("ping")
        return True
    except PyMongoError as e:
        logger.debug(f"MongoDB ping failed: {e}")
        return False
