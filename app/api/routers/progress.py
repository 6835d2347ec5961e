"""
Progress log API routes
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.dependencies import get_dispatcher
from app.core.auth import get_current_account, require_subscription
from app.models.progress import (
    ProgressCreateRequest,
    ProgressUpdateRequest,
    ProgressResponse,
    ProgressListResponse,
    ProgressCompareResponse,
)
from app.services import notification_service, progress_service
from app.services.audit_service import record_audit
from app.utils.push_utils import PushDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.get("", response_model=ProgressListResponse)
def list_progress(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    account: dict = Depends(get_current_account),
):
    return progress_service.list_progress(str(account["_id"]), page=page, limit=limit)


@router.post("", response_model=ProgressResponse, status_code=status.HTTP_201_CREATED)
def create_progress(
    body: ProgressCreateRequest,
    account: dict = Depends(require_subscription),
    dispatcher: Optional[PushDispatcher] = Depends(get_dispatcher),
):
    """Log today's (or a past day's) progress; milestone streaks get a push"""
    account_id = str(account["_id"])
    entry = progress_service.create_progress(account_id, body)

    streak = progress_service.current_streak(account_id)
    tokens = (account.get("notifications") or {}).get("pushTokens", [])
    notification_service.send_motivational_message(dispatcher, account_id, tokens, streak)
    return entry


@router.get("/compare", response_model=ProgressCompareResponse)
def compare_progress(
    date1: datetime = Query(...),
    date2: datetime = Query(...),
    account: dict = Depends(get_current_account),
):
    """Weight and measurement change between the entries of two days"""
    return progress_service.compare_progress(str(account["_id"]), date1, date2)


@router.get("/{progress_id}", response_model=ProgressResponse)
def get_progress(progress_id: str, account: dict = Depends(get_current_account)):
    return progress_service.get_progress(str(account["_id"]), progress_id)


@router.put("/{progress_id}", response_model=ProgressResponse)
def update_progress(
    progress_id: str,
    body: ProgressUpdateRequest,
    account: dict = Depends(require_subscription),
):
    account_id = str(account["_id"])
    entry = progress_service.update_progress(account_id, progress_id, body)
    record_audit(
        "user_action", "update_progress", account_id,
        data={
            "progressId": progress_id,
            "updatedFields": sorted(body.model_dump(exclude_unset=True, exclude_none=True)),
            "date": entry.date,
        },
    )
    return entry


@router.delete("/{progress_id}")
def delete_progress(progress_id: str, account: dict = Depends(require_subscription)):
    account_id = str(account["_id"])
    deleted = progress_service.delete_progress(account_id, progress_id)
    record_audit(
        "user_action", "delete_progress", account_id,
        data={"progressId": progress_id, "date": deleted["date"], "weight": deleted["weight"]},
    )
    return {"success": True, "message": "Progress entry deleted successfully"}
