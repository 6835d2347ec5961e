"""
Account session API routes (identity comes from Firebase ID tokens)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from app.api.dependencies import get_dispatcher
from app.core.auth import get_current_account
from app.models.account import (
    LoginRequest,
    LogoutRequest,
    UpdatePushTokenRequest,
    ProfileUpdateRequest,
    AccountResponse,
    SubscriptionStatusResponse,
)
from app.services import account_service, notification_service
from app.services.audit_service import record_audit
from app.utils.account_helpers import account_doc_to_response, subscription_status_response
from app.utils.push_utils import PushDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=AccountResponse)
def login(
    body: LoginRequest,
    request: Request,
    account: dict = Depends(get_current_account),
    dispatcher: Optional[PushDispatcher] = Depends(get_dispatcher),
):
    """
    Register the device's push token (if any) and return the account.

    Accounts are created by the auth dependency on first login; a freshly
    created account gets the welcome push.
    """
    account_id = str(account["_id"])
    if body.fcmToken:
        account = account_service.add_push_token(account_id, body.fcmToken)

    if getattr(request.state, "account_created", False):
        tokens = (account.get("notifications") or {}).get("pushTokens", [])
        notification_service.send_welcome_notification(dispatcher, account_id, tokens)

    record_audit(
        "auth", "login", account_id,
        data={
            "subscription": (account.get("subscription") or {}).get("status"),
            "fcmToken": "provided" if body.fcmToken else "not_provided",
        },
    )
    return account_doc_to_response(account)


@router.post("/logout")
def logout(body: LogoutRequest, account: dict = Depends(get_current_account)):
    """Remove the device's push token"""
    account_id = str(account["_id"])
    account_service.remove_push_token(account_id, body.fcmToken)
    record_audit("auth", "logout", account_id, data={"fcmToken": "removed"})
    return {"success": True, "message": "Logout successful"}


@router.get("/me", response_model=AccountResponse)
def me(account: dict = Depends(get_current_account)):
    return account_doc_to_response(account)


@router.get("/subscription-status", response_model=SubscriptionStatusResponse)
def subscription_status(account: dict = Depends(get_current_account)):
    fresh = account_service.get_account_by_id(str(account["_id"]))
    return subscription_status_response(fresh)


@router.put("/fcm-token")
def update_fcm_token(body: UpdatePushTokenRequest, account: dict = Depends(get_current_account)):
    account_service.replace_push_token(str(account["_id"]), body.fcmToken, body.oldToken)
    return {"success": True, "message": "FCM token updated successfully"}


@router.delete("/account")
def delete_account(account: dict = Depends(get_current_account)):
    """Soft-deactivate the calling account"""
    account_id = str(account["_id"])
    account_service.deactivate_account(account_id)
    record_audit(
        "auth", "account_deactivation", account_id,
        data={"reason": "user_request", "subscription": (account.get("subscription") or {}).get("status")},
    )
    return {"success": True, "message": "Account deactivated successfully"}


@router.put("/profile", response_model=AccountResponse)
def update_profile(body: ProfileUpdateRequest, account: dict = Depends(get_current_account)):
    """Partial update of name, phone number, profile details and settings"""
    account_id = str(account["_id"])
    updated = account_service.update_profile(account_id, body)
    record_audit(
        "user_action", "profile_update", account_id,
        data={"updatedFields": sorted(body.model_dump(exclude_unset=True, exclude_none=True))},
    )
    return account_doc_to_response(updated)
