"""
Progress service - daily progress entries
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Iterable, Optional, Set

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.db.mongodb import require_collection, PROGRESS_COLLECTION
from app.models.progress import (
    ProgressCreateRequest,
    ProgressUpdateRequest,
    ProgressResponse,
    ProgressListResponse,
    ProgressComparison,
    ProgressCompareResponse,
)
from app.utils.account_helpers import parse_object_id
from app.utils.time_utils import utcnow, to_naive_utc, day_bounds

logger = logging.getLogger(__name__)


def _progress():
    return require_collection(PROGRESS_COLLECTION)


def progress_doc_to_response(progress_doc: dict) -> ProgressResponse:
    return ProgressResponse(
        id=str(progress_doc["_id"]),
        accountId=progress_doc["accountId"],
        date=progress_doc["date"],
        weight=progress_doc["weight"],
        measurements=progress_doc.get("measurements"),
        bodyFatPercentage=progress_doc.get("bodyFatPercentage"),
        notes=progress_doc.get("notes"),
        mood=progress_doc.get("mood"),
        energyLevel=progress_doc.get("energyLevel"),
        sleepQuality=progress_doc.get("sleepQuality"),
        createdAt=progress_doc.get("createdAt"),
        updatedAt=progress_doc.get("updatedAt"),
    )


def create_progress(account_id: str, request: ProgressCreateRequest) -> ProgressResponse:
    """
    Log progress for one calendar day; the date is truncated to the start of
    that day in REMINDER_TIMEZONE.

    Raises:
        ValidationError (409): If the day already has an entry
    """
    day_start, _ = day_bounds(to_naive_utc(request.date), settings.REMINDER_TIMEZONE)
    progress_doc = {
        "accountId": account_id,
        "date": day_start,
        "weight": request.weight,
        "measurements": request.measurements.model_dump(exclude_none=True) if request.measurements else None,
        "bodyFatPercentage": request.bodyFatPercentage,
        "notes": request.notes,
        "mood": request.mood,
        "energyLevel": request.energyLevel,
        "sleepQuality": request.sleepQuality,
        "createdAt": utcnow(),
    }
    try:
        result = _progress().insert_one(progress_doc)
    except DuplicateKeyError:
        raise ValidationError("Progress for this date already exists", status_code=409)

    progress_doc["_id"] = result.inserted_id
    logger.info(f"Progress logged for account {account_id} on {day_start.date()}")
    return progress_doc_to_response(progress_doc)


def list_progress(account_id: str, page: int = 1, limit: int = 20) -> ProgressListResponse:
    collection = _progress()
    query = {"accountId": account_id}
    total = collection.count_documents(query)
    cursor = collection.find(query).sort("date", DESCENDING).skip((page - 1) * limit).limit(limit)
    return ProgressListResponse(
        progress=[progress_doc_to_response(doc) for doc in cursor],
        total=total,
        page=page,
        limit=limit,
        totalPages=math.ceil(total / limit) if limit else 0,
    )


def _find_entry(account_id: str, progress_id: str) -> dict:
    progress_doc = _progress().find_one(
        {"_id": parse_object_id(progress_id, "progress ID"), "accountId": account_id}
    )
    if not progress_doc:
        raise NotFoundError("Progress entry not found")
    return progress_doc


def get_progress(account_id: str, progress_id: str) -> ProgressResponse:
    """Entries of other accounts are reported as not found"""
    return progress_doc_to_response(_find_entry(account_id, progress_id))


def update_progress(account_id: str, progress_id: str, request: ProgressUpdateRequest) -> ProgressResponse:
    """
    Overwrite the fields present (and not null) in `request`.

    Raises:
        ValidationError: If no field was sent
        NotFoundError: If the entry does not exist for this account
    """
    fields = request.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise ValidationError("No fields to update")
    fields["updatedAt"] = utcnow()

    progress_doc = _progress().find_one_and_update(
        {"_id": parse_object_id(progress_id, "progress ID"), "accountId": account_id},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if not progress_doc:
        raise NotFoundError("Progress entry not found")
    logger.info(f"Progress {progress_id} updated for account {account_id}: {sorted(fields)}")
    return progress_doc_to_response(progress_doc)


def delete_progress(account_id: str, progress_id: str) -> dict:
    """Returns the deleted document"""
    progress_doc = _progress().find_one_and_delete(
        {"_id": parse_object_id(progress_id, "progress ID"), "accountId": account_id}
    )
    if not progress_doc:
        raise NotFoundError("Progress entry not found")
    logger.info(f"Progress {progress_id} deleted for account {account_id}")
    return progress_doc


def compare_progress(account_id: str, date1: datetime, date2: datetime) -> ProgressCompareResponse:
    """
    Compare the entries logged on two days; differences are second minus first.

    Raises:
        NotFoundError: If either day has no entry
    """
    entries = []
    for value in (date1, date2):
        day_start, _ = day_bounds(to_naive_utc(value), settings.REMINDER_TIMEZONE)
        entries.append(_progress().find_one({"accountId": account_id, "date": day_start}))
    first, second = entries
    if not first or not second:
        raise NotFoundError("One or both progress entries not found")

    changes = {}
    first_measurements = first.get("measurements") or {}
    second_measurements = second.get("measurements") or {}
    for key, before in first_measurements.items():
        after = second_measurements.get(key)
        if before and after:
            changes[key] = round(after - before, 2)

    return ProgressCompareResponse(
        progress1=progress_doc_to_response(first),
        progress2=progress_doc_to_response(second),
        comparison=ProgressComparison(
            weightDifference=round(second["weight"] - first["weight"], 2),
            daysBetween=abs((second["date"] - first["date"]).total_seconds()) / 86400,
            measurementChanges=changes,
        ),
    )


def accounts_logged_on_day(
    account_ids: Iterable[str],
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> Set[str]:
    """
    The subset of `account_ids` with an entry dated within the day that
    contains `now` (in `tz_name`, default REMINDER_TIMEZONE).
    """
    account_ids = list(account_ids)
    if not account_ids:
        return set()
    start, end = day_bounds(now or utcnow(), tz_name or settings.REMINDER_TIMEZONE)
    return set(
        _progress().distinct(
            "accountId",
            {"accountId": {"$in": account_ids}, "date": {"$gte": start, "$lt": end}},
        )
    )


def current_streak(account_id: str, now: Optional[datetime] = None) -> int:
    """Number of consecutive days, ending today, with a progress entry"""
    start, _ = day_bounds(now or utcnow(), settings.REMINDER_TIMEZONE)
    logged_days = {
        doc["date"]
        for doc in _progress().find(
            {"accountId": account_id, "date": {"$lte": start}},
            {"date": 1},
        ).sort("date", DESCENDING).limit(366)
    }
    streak = 0
    day = start
    while day in logged_days:
        streak += 1
        # Step back through day_bounds so DST shifts keep local midnights
        day, _ = day_bounds(day - timedelta(hours=1), settings.REMINDER_TIMEZONE)
    return streak
