"""
Notification settings API routes
"""
import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import require_dispatcher
from app.core.auth import get_current_account, require_admin
from app.core.exceptions import NotFoundError
from app.models.notification import (
    NotificationSettingsRequest,
    NotificationSettingsResponse,
    SendNotificationRequest,
    MulticastResult,
)
from app.services import account_service, notification_service
from app.utils.push_utils import PushDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _settings_response(account: dict) -> NotificationSettingsResponse:
    notifications = account.get("notifications") or {}
    return NotificationSettingsResponse(
        notificationsEnabled=notifications.get("enabled", True),
        reminderTimes=notifications.get("reminderTimes", []),
    )


@router.get("/settings", response_model=NotificationSettingsResponse)
def get_settings(account: dict = Depends(get_current_account)):
    return _settings_response(account)


@router.put("/settings", response_model=NotificationSettingsResponse)
def update_settings(body: NotificationSettingsRequest, account: dict = Depends(get_current_account)):
    updated = account_service.update_notification_settings(
        str(account["_id"]), body.notificationsEnabled, body.reminderTimes
    )
    return _settings_response(updated)


@router.post("/test", response_model=MulticastResult)
def send_test_notification(
    body: SendNotificationRequest,
    admin: dict = Depends(require_admin),
    dispatcher: PushDispatcher = Depends(require_dispatcher),
):
    """Admin-only push to one or more accounts"""
    account_ids = [body.accountId] if body.accountId else body.accountIds
    accounts = account_service.get_accounts_by_ids(account_ids)
    if not accounts:
        raise NotFoundError("No matching accounts")

    logger.info(f"Admin {admin['_id']} sending test notification to {len(accounts)} account(s)")
    return notification_service.send_to_accounts(dispatcher, accounts, body.title, body.body, body.data)
