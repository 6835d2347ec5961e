"""
Audit log service - best-effort writes to the logs collection and the admin query over it
"""
import logging
import math
from datetime import datetime
from typing import Optional, Dict, Any

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from app.db.mongodb import get_collection, require_collection, LOGS_COLLECTION
from app.models.audit import AuditRecord, AuditListResponse, Pagination
from app.utils.time_utils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

AUDIT_TYPES = ("auth", "payment", "notification", "subscription", "promo", "user_action", "system")


def record_audit(
    type: str,
    action: str,
    account_id: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    status: str = "success",
    level: Optional[str] = None,
    needs_review: bool = False,
) -> bool:
    """
    Write one audit record.

    Never raises: a failed write is logged and reported through the return value.

    Args:
        type: One of AUDIT_TYPES
        action: Short machine-readable action name (e.g. "webhook.customer.subscription.updated")
        account_id: Account the record is about, if any
        data: Free-form details
        status: "success" or "failure"
        level: Log level; defaults to "error" for failures and "info" otherwise
        needs_review: Flag the record for operators

    Returns:
        True if the record was stored
    """
    record = {
        "level": level or ("error" if status == "failure" else "info"),
        "type": type,
        "action": action,
        "accountId": account_id,
        "data": data or {},
        "status": status,
        "needsReview": needs_review,
        "createdAt": utcnow(),
    }

    collection = get_collection(LOGS_COLLECTION)
    if collection is None:
        logger.warning(f"Audit record dropped (no database): {type}/{action} account={account_id}")
        return False

    try:
        collection.insert_one(record)
        return True
    except PyMongoError as e:
        logger.error(f"Failed to write audit record {type}/{action}: {e}")
        return False


def list_audit_records(
    type: Optional[str] = None,
    level: Optional[str] = None,
    status: Optional[str] = None,
    account_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
) -> AuditListResponse:
    """Filtered, paged read of the audit log for the admin dashboard"""
    query: Dict[str, Any] = {}
    if type:
        query["type"] = type
    if level:
        query["level"] = level
    if status:
        query["status"] = status
    if account_id:
        query["accountId"] = account_id
    if start_date or end_date:
        query["createdAt"] = {}
        if start_date:
            query["createdAt"]["$gte"] = to_naive_utc(start_date)
        if end_date:
            query["createdAt"]["$lte"] = to_naive_utc(end_date)

    collection = require_collection(LOGS_COLLECTION)
    total = collection.count_documents(query)
    cursor = (
        collection.find(query)
        .sort(sort_by, ASCENDING if sort_order == "asc" else DESCENDING)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    logs = [
        AuditRecord(
            id=str(doc["_id"]),
            level=doc.get("level", "info"),
            type=doc["type"],
            action=doc["action"],
            accountId=doc.get("accountId"),
            data=doc.get("data") or {},
            status=doc.get("status", "success"),
            needsReview=doc.get("needsReview", False),
            createdAt=doc.get("createdAt"),
        )
        for doc in cursor
    ]
    return AuditListResponse(
        logs=logs,
        pagination=Pagination(total=total, page=page, limit=limit, totalPages=math.ceil(total / limit)),
    )
