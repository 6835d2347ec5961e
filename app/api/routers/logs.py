"""
Admin audit log API routes
"""
from datetime import datetime
from typing import Optional, Literal

from fastapi import APIRouter, Depends, Query

from app.core.auth import require_admin
from app.models.audit import AuditListResponse
from app.services.audit_service import list_audit_records

router = APIRouter(prefix="/api/logs", tags=["logs"])


@router.get("", response_model=AuditListResponse)
def list_logs(
    type: Optional[Literal["auth", "payment", "notification", "subscription", "promo", "user_action", "system"]] = None,
    level: Optional[Literal["debug", "info", "warning", "error", "critical"]] = None,
    status: Optional[Literal["success", "failure"]] = None,
    accountId: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    sortBy: Literal["createdAt", "level", "type", "status"] = "createdAt",
    sortOrder: Literal["asc", "desc"] = "desc",
    admin: dict = Depends(require_admin),
):
    return list_audit_records(
        type=type,
        level=level,
        status=status,
        account_id=accountId,
        start_date=startDate,
        end_date=endDate,
        page=page,
        limit=limit,
        sort_by=sortBy,
        sort_order=sortOrder,
    )
