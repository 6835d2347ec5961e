"""
Account service - the entitlement store and account lifecycle
"""
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.exceptions import NotFoundError, UpstreamUnavailable, ValidationError
from app.db.mongodb import require_collection, ACCOUNTS_COLLECTION
from app.models.account import ProfileUpdateRequest
from app.utils.account_helpers import new_account_document, parse_object_id
from app.utils.redis_utils import get_cached_account, cache_account, invalidate_account_cache
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def _accounts():
    return require_collection(ACCOUNTS_COLLECTION)


def get_or_create_account(identity: Dict[str, Any]) -> Tuple[dict, bool]:
    """
    Look up the account for a verified identity, creating it on first sight.

    The Redis cache is consulted first; a miss (or any cache failure) falls
    through to MongoDB and refills the cache.

    Args:
        identity: Decoded Firebase ID token claims

    Returns:
        (account document, created) tuple
    """
    firebase_uid = identity["uid"]

    cached = get_cached_account(firebase_uid)
    if cached is not None:
        return cached, False

    collection = _accounts()
    created = False
    try:
        account = collection.find_one({"firebaseUid": firebase_uid})
        if account is None:
            account = new_account_document(identity)
            try:
                result = collection.insert_one(account)
                account["_id"] = result.inserted_id
                created = True
                logger.info(f"New account created: {account.get('email')} (ID: {result.inserted_id})")
            except DuplicateKeyError:
                # Another request created it first
                account = collection.find_one({"firebaseUid": firebase_uid})
    except PyMongoError as e:
        logger.error(f"Error loading account for uid {firebase_uid}: {e}")
        raise UpstreamUnavailable("Database error while loading account")

    _cache_if_current(account)
    return account, created


def _cache_if_current(account: dict) -> None:
    """
    Fill the cache, then drop the entry again if the document changed since it
    was read. Writers update MongoDB before invalidating, so an invalidation
    that ran before our write shows up here as a newer dateUpdated.
    """
    if not cache_account(account):
        return
    try:
        current = _accounts().find_one({"_id": account["_id"]}, {"dateUpdated": 1})
    except PyMongoError as e:
        logger.warning(f"Could not confirm cached account {account['_id']}, dropping it: {e}")
        current = None
    if current is None or current.get("dateUpdated") != account.get("dateUpdated"):
        invalidate_account_cache(account.get("firebaseUid"))


def get_account_by_id(account_id: str) -> dict:
    """Read an account straight from MongoDB (never from the cache)"""
    account_id_obj = parse_object_id(account_id, "account ID")
    try:
        account = _accounts().find_one({"_id": account_id_obj})
    except PyMongoError as e:
        logger.error(f"Error querying account {account_id}: {e}")
        raise UpstreamUnavailable("Database error while loading account")
    if not account:
        raise NotFoundError("Account not found")
    return account


def get_accounts_by_ids(account_ids: List[str]) -> List[dict]:
    object_ids = [parse_object_id(account_id, "account ID") for account_id in account_ids]
    return list(_accounts().find({"_id": {"$in": object_ids}}))


def get_account_by_customer_id(customer_id: str) -> Optional[dict]:
    """Resolve the account mapped to a Stripe customer id, or None"""
    if not customer_id:
        return None
    return _accounts().find_one({"subscription.stripeCustomerId": customer_id})


def _update_account(account_id: str, update: dict, guard: Optional[dict] = None) -> Optional[dict]:
    """
    Apply an update and invalidate the account's cache entry.

    Returns:
        The updated document, or None when `guard` did not match
    """
    query = {"_id": parse_object_id(account_id, "account ID")}
    if guard:
        query.update(guard)
    update.setdefault("$set", {})["dateUpdated"] = utcnow()

    try:
        account = _accounts().find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    except PyMongoError as e:
        logger.error(f"Error updating account {account_id}: {e}")
        raise UpstreamUnavailable("Database error while updating account")

    if account is None:
        if guard:
            return None
        raise NotFoundError("Account not found")

    invalidate_account_cache(account.get("firebaseUid"))
    return account


def apply_subscription_update(
    account_id: str,
    fields: Dict[str, Any],
    expected: Optional[Dict[str, Any]] = None,
) -> Optional[dict]:
    """
    Overwrite fields of the subscription sub-record.

    Args:
        account_id: Account to update
        fields: Subscription fields to set (e.g. {"status": "active"})
        expected: Current values the write is conditional on; when given and
            they no longer match, nothing is written and None is returned

    Returns:
        The updated account document, or None on a lost compare-and-swap
    """
    update = {"$set": {f"subscription.{key}": value for key, value in fields.items()}}
    guard = None
    if expected is not None:
        guard = {f"subscription.{key}": value for key, value in expected.items()}

    account = _update_account(account_id, update, guard)
    if account is not None:
        logger.info(f"Updated subscription for account {account_id}: {sorted(fields)}")
    return account


def set_stripe_references(
    account_id: str,
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> dict:
    """Record external Stripe ids; never touches the subscription status"""
    fields = {}
    if customer_id:
        fields["stripeCustomerId"] = customer_id
    if subscription_id:
        fields["stripeSubscriptionId"] = subscription_id
    if not fields:
        return get_account_by_id(account_id)
    return apply_subscription_update(account_id, fields)


def add_push_token(account_id: str, token: str) -> dict:
    return _update_account(account_id, {"$addToSet": {"notifications.pushTokens": token}})


def remove_push_token(account_id: str, token: str) -> dict:
    return _update_account(account_id, {"$pull": {"notifications.pushTokens": token}})


def replace_push_token(account_id: str, token: str, old_token: Optional[str] = None) -> dict:
    """Swap a device's old token for its refreshed one"""
    # $pull and $addToSet on the same array cannot share one update
    if old_token and old_token != token:
        remove_push_token(account_id, old_token)
    return add_push_token(account_id, token)


def update_notification_settings(
    account_id: str,
    enabled: bool,
    reminder_times: Optional[List[str]] = None,
) -> dict:
    fields = {"notifications.enabled": enabled}
    if reminder_times is not None:
        fields["notifications.reminderTimes"] = reminder_times
    account = _update_account(account_id, {"$set": fields})
    logger.info(f"Updated notification settings for account {account_id}")
    return account


def update_profile(account_id: str, request: ProfileUpdateRequest) -> dict:
    """
    Apply a partial profile update. Nested objects are merged field by field,
    so sending {"profile": {"height": 180}} keeps the stored dateOfBirth.

    Raises:
        ValidationError: If the request carries no changes
    """
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    fields = {}
    for key in ("displayName", "phoneNumber"):
        if key in changes:
            fields[key] = changes[key]
    for key, value in (changes.get("profile") or {}).items():
        fields[f"profile.{key}"] = value

    account_settings = changes.get("settings") or {}
    if "notificationsEnabled" in account_settings:
        fields["notifications.enabled"] = account_settings["notificationsEnabled"]
    if "reminderTimes" in account_settings:
        fields["notifications.reminderTimes"] = account_settings["reminderTimes"]
    if "theme" in account_settings:
        fields["preferences.theme"] = account_settings["theme"]
    for key, value in (account_settings.get("units") or {}).items():
        fields[f"preferences.units.{key}"] = value

    if not fields:
        raise ValidationError("No profile fields to update")

    account = _update_account(account_id, {"$set": fields})
    logger.info(f"Updated profile for account {account_id}: {sorted(fields)}")
    return account


def deactivate_account(account_id: str) -> dict:
    """Soft-delete: the document stays, the account stops authenticating and receiving pushes"""
    now = utcnow()
    account = _update_account(account_id, {"$set": {"isActive": False, "deactivatedAt": now}})
    logger.info(f"Account deactivated: {account_id}")
    return account


def touch_last_active(account_id: str, now: Optional[datetime] = None) -> None:
    try:
        _accounts().update_one(
            {"_id": parse_object_id(account_id, "account ID")},
            {"$set": {"lastActiveAt": now or utcnow()}},
        )
    except PyMongoError as e:
        logger.warning(f"Could not update lastActiveAt for account {account_id}: {e}")
