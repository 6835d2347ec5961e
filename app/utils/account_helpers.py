"""
Account-related helper functions
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from bson import ObjectId
from bson.errors import InvalidId

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.account import (
    AccountResponse,
    SubscriptionRecord,
    NotificationRecord,
    ProfileDetails,
    Preferences,
    SubscriptionStatusResponse,
)
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_TIMES = ["12:00", "18:00", "22:00", "23:00"]
SUBSCRIPTION_STATUSES = ("trial", "active", "canceled", "expired")


def parse_object_id(value: str, label: str = "ID") -> ObjectId:
    """Parse a string into an ObjectId, raising ValidationError when malformed"""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} format")


def new_account_document(identity: Dict[str, Any], now: Optional[datetime] = None) -> dict:
    """
    Build the document for an account seen for the first time.

    Args:
        identity: Decoded identity token claims (uid, email, name, picture, email_verified)
        now: Creation time (naive UTC), defaults to the current time

    Returns:
        Account document ready for insert_one
    """
    now = now or utcnow()
    return {
        "firebaseUid": identity["uid"],
        "email": identity.get("email"),
        "displayName": identity.get("name"),
        "photoURL": identity.get("picture"),
        "isEmailVerified": bool(identity.get("email_verified", False)),
        "phoneNumber": None,
        "profile": {},
        "preferences": {"theme": "system", "units": {"weight": "kg", "height": "cm"}},
        "subscription": {
            "status": "trial",
            "plan": "monthly",
            "trialEndsAt": now + timedelta(days=settings.TRIAL_PERIOD_DAYS),
        },
        "notifications": {
            "pushTokens": [],
            "enabled": True,
            "reminderTimes": list(DEFAULT_REMINDER_TIMES),
        },
        "isActive": True,
        "lastActiveAt": now,
        "dateCreated": now,
        "dateUpdated": now,
    }


def is_trial_expired(account_doc: dict, now: Optional[datetime] = None) -> bool:
    """True when the account is still on trial and the trial end has passed"""
    subscription = account_doc.get("subscription") or {}
    if subscription.get("status") != "trial":
        return False
    trial_ends_at = subscription.get("trialEndsAt")
    if trial_ends_at is None:
        return False
    return trial_ends_at < (now or utcnow())


def is_subscription_active(account_doc: dict, now: Optional[datetime] = None) -> bool:
    """Active subscribers and unexpired trials are entitled"""
    subscription = account_doc.get("subscription") or {}
    status = subscription.get("status")
    if status == "active":
        return True
    return status == "trial" and not is_trial_expired(account_doc, now)


def account_doc_to_response(account_doc: dict) -> AccountResponse:
    """
    Convert MongoDB account document to AccountResponse

    Args:
        account_doc: MongoDB account document

    Returns:
        AccountResponse object
    """
    return AccountResponse(
        id=str(account_doc["_id"]),
        firebaseUid=account_doc["firebaseUid"],
        email=account_doc.get("email"),
        displayName=account_doc.get("displayName"),
        photoURL=account_doc.get("photoURL"),
        phoneNumber=account_doc.get("phoneNumber"),
        isEmailVerified=account_doc.get("isEmailVerified", False),
        isActive=account_doc.get("isActive", True),
        profile=ProfileDetails(**(account_doc.get("profile") or {})),
        preferences=Preferences(**(account_doc.get("preferences") or {})),
        subscription=SubscriptionRecord(**(account_doc.get("subscription") or {})),
        notifications=NotificationRecord(**(account_doc.get("notifications") or {})),
        isSubscriptionActive=is_subscription_active(account_doc),
        isTrialExpired=is_trial_expired(account_doc),
        lastActiveAt=account_doc.get("lastActiveAt"),
        dateCreated=account_doc.get("dateCreated"),
    )


def subscription_status_response(account_doc: dict, now: Optional[datetime] = None) -> SubscriptionStatusResponse:
    subscription = account_doc.get("subscription") or {}
    return SubscriptionStatusResponse(
        status=subscription.get("status", "trial"),
        isActive=is_subscription_active(account_doc, now),
        isTrialExpired=is_trial_expired(account_doc, now),
        plan=subscription.get("plan", "monthly"),
        trialEndsAt=subscription.get("trialEndsAt"),
        currentPeriodStart=subscription.get("currentPeriodStart"),
        currentPeriodEnd=subscription.get("currentPeriodEnd"),
        canceledAt=subscription.get("canceledAt"),
    )
