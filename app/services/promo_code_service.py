"""
Promo code service - ledger administration and redemption
"""
import logging
import math
import secrets
import string
from datetime import datetime
from typing import Optional, List

from dateutil.relativedelta import relativedelta
from pymongo import ReturnDocument, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.config import settings
from app.core.exceptions import (
    AppError,
    ValidationError,
    NotFoundError,
    InvalidRedemption,
    ConcurrencyConflict,
)
from app.db.mongodb import require_collection, PROMO_CODES_COLLECTION
from app.models.promo_code import (
    NON_MONETARY_TYPES,
    check_value_for_type,
    DiscountInfo,
    PromoCodeCreateRequest,
    PromoCodeUpdateRequest,
    BulkGenerateRequest,
    PromoCodeResponse,
    PromoValidationResult,
    RedemptionResult,
    PromoCodeListResponse,
    BulkGenerateResult,
)
from app.services import account_service
from app.services.audit_service import record_audit
from app.utils.account_helpers import parse_object_id
from app.utils.account_locks import account_lock
from app.utils.time_utils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

LIFETIME_PERIOD_END = datetime(2099, 12, 31)
FREE_PERIOD_MONTHS = {"free_month": 1, "free_year": 12}
RANDOM_CODE_LENGTH = 6
RANDOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _promo_codes():
    return require_collection(PROMO_CODES_COLLECTION)


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    return to_naive_utc(value) if value is not None else None


def promo_doc_to_response(promo_doc: dict) -> PromoCodeResponse:
    """Convert a promo code document to its API shape (usedBy is never exposed)"""
    return PromoCodeResponse(
        id=str(promo_doc["_id"]),
        code=promo_doc["code"],
        type=promo_doc["type"],
        value=promo_doc.get("value"),
        description=promo_doc.get("description"),
        isActive=promo_doc.get("isActive", True),
        usageLimit=promo_doc.get("usageLimit"),
        usedCount=promo_doc.get("usedCount", 0),
        validFrom=promo_doc.get("validFrom"),
        validUntil=promo_doc.get("validUntil"),
        createdBy=promo_doc.get("createdBy"),
        createdAt=promo_doc.get("createdAt"),
        updatedAt=promo_doc.get("updatedAt"),
    )


def get_discount_info(promo_doc: dict) -> DiscountInfo:
    promo_type = promo_doc.get("type")
    value = promo_doc.get("value")
    if promo_type == "free_month":
        return DiscountInfo(type="free_period", value=1, description="One month free")
    if promo_type == "free_year":
        return DiscountInfo(type="free_period", value=12, description="One year free")
    if promo_type == "lifetime":
        return DiscountInfo(type="lifetime", description="Lifetime access")
    if promo_type == "discount_percent":
        return DiscountInfo(type="percent", value=value, description=f"{value:g}% discount")
    if promo_type == "discount_amount":
        return DiscountInfo(type="amount", value=value, description=f"${value / 100:.2f} discount")
    return DiscountInfo(type="unknown", description="Invalid promo code")


def validate_promo_document(
    promo_doc: dict,
    account_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PromoValidationResult:
    """
    Check a promo code document against the current time and account.

    Checks run in a fixed order and the first failure is reported.
    """
    now = now or utcnow()

    if not promo_doc.get("isActive", False):
        return PromoValidationResult(valid=False, reason="Promo code is not active")

    valid_from = promo_doc.get("validFrom")
    if valid_from and valid_from > now:
        return PromoValidationResult(valid=False, reason="Promo code is not yet valid")

    valid_until = promo_doc.get("validUntil")
    if valid_until and valid_until < now:
        return PromoValidationResult(valid=False, reason="Promo code has expired")

    usage_limit = promo_doc.get("usageLimit")
    if usage_limit is not None and promo_doc.get("usedCount", 0) >= usage_limit:
        return PromoValidationResult(valid=False, reason="Promo code usage limit reached")

    if account_id and account_id in promo_doc.get("usedBy", []):
        return PromoValidationResult(valid=False, reason="You have already used this promo code")

    return PromoValidationResult(valid=True, discount=get_discount_info(promo_doc))


def find_promo_by_code(code: str) -> Optional[dict]:
    return _promo_codes().find_one({"code": code.strip().upper()})


def validate_promo_code(
    code: str,
    account_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PromoValidationResult:
    """Look a code up and validate it, optionally for a specific account"""
    promo_doc = find_promo_by_code(code)
    if not promo_doc:
        return PromoValidationResult(valid=False, reason="Promo code not found")
    return validate_promo_document(promo_doc, account_id, now)


def _claim_redemption(code: str, account_id: str, now: datetime) -> dict:
    """
    Record `account_id` as a user of the code with one conditional update.

    The update only matches if usedCount and usageLimit still equal the
    values that were validated, so two callers cannot both take the last
    slot. A lost race re-reads and re-validates.

    Returns:
        The promo code document after the increment
    """
    collection = _promo_codes()
    max_attempts = settings.PROMO_REDEMPTION_MAX_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        promo_doc = collection.find_one({"code": code})
        if not promo_doc:
            raise InvalidRedemption("Promo code not found")

        validation = validate_promo_document(promo_doc, account_id, now)
        if not validation.valid:
            raise InvalidRedemption(validation.reason)

        claimed = collection.find_one_and_update(
            {
                "_id": promo_doc["_id"],
                "isActive": True,
                "usedCount": promo_doc.get("usedCount", 0),
                "usageLimit": promo_doc.get("usageLimit"),
                "usedBy": {"$ne": account_id},
            },
            {
                "$inc": {"usedCount": 1},
                "$push": {"usedBy": account_id},
                "$set": {"updatedAt": now},
            },
            return_document=ReturnDocument.AFTER,
        )
        if claimed is not None:
            return claimed

        logger.info(f"Redemption of {code} by account {account_id} lost a concurrent update (attempt {attempt})")

    raise ConcurrencyConflict("Promo code is being redeemed concurrently, please retry")


def _release_redemption(promo_id, account_id: str) -> None:
    """Undo a claimed redemption whose entitlement effect could not be applied"""
    try:
        _promo_codes().update_one(
            {"_id": promo_id, "usedBy": account_id},
            {"$inc": {"usedCount": -1}, "$pull": {"usedBy": account_id}},
        )
    except PyMongoError as e:
        logger.error(f"Failed to release redemption of promo {promo_id} for account {account_id}: {e}")
        record_audit(
            "promo", "promo_code_release_failed", account_id,
            data={"promoCodeId": str(promo_id), "error": str(e)},
            status="failure", needs_review=True,
        )


def _apply_entitlement(promo_doc: dict, account_id: str, now: datetime) -> Optional[dict]:
    """
    Apply the type-specific benefit to the account's subscription.

    Runs under the account lock and writes conditionally on the
    currentPeriodEnd that was read, so a concurrent webhook cannot be
    overwritten with a stale value.

    Returns:
        The account's subscription sub-record after the change
    """
    promo_type = promo_doc["type"]

    with account_lock(account_id):
        for _ in range(settings.PROMO_REDEMPTION_MAX_ATTEMPTS):
            account = account_service.get_account_by_id(account_id)
            subscription = account.get("subscription") or {}
            current_end = subscription.get("currentPeriodEnd")

            if promo_type in FREE_PERIOD_MONTHS:
                base = current_end or now
                fields = {"currentPeriodEnd": base + relativedelta(months=FREE_PERIOD_MONTHS[promo_type])}
            elif promo_type == "lifetime":
                fields = {"status": "active", "currentPeriodEnd": LIFETIME_PERIOD_END}
            else:
                # Discounts are informational; billing applies them
                return subscription

            updated = account_service.apply_subscription_update(
                account_id, fields, expected={"currentPeriodEnd": current_end}
            )
            if updated is not None:
                return updated.get("subscription")

    raise ConcurrencyConflict("Subscription changed concurrently, please retry")


def redeem_promo_code(code: str, account_id: str, now: Optional[datetime] = None) -> RedemptionResult:
    """
    Redeem a promo code for an account, exactly once.

    Raises:
        InvalidRedemption: If the code is unknown, inactive, outside its
            validity window, exhausted, or already used by this account
        ConcurrencyConflict: If the conditional writes kept losing
    """
    now = now or utcnow()
    code = code.strip().upper()

    # Fail fast on accounts that do not exist before touching the ledger
    account_service.get_account_by_id(account_id)

    promo_doc = _claim_redemption(code, account_id, now)

    try:
        subscription = _apply_entitlement(promo_doc, account_id, now)
    except (AppError, PyMongoError) as e:
        logger.error(f"Entitlement for promo {code} failed for account {account_id}, releasing redemption: {e}")
        _release_redemption(promo_doc["_id"], account_id)
        record_audit(
            "promo", "promo_code_used", account_id,
            data={"code": code, "type": promo_doc["type"], "error": str(e)},
            status="failure",
        )
        raise

    logger.info(f"Promo code {code} redeemed by account {account_id}")
    record_audit(
        "promo", "promo_code_used", account_id,
        data={
            "promoCodeId": str(promo_doc["_id"]),
            "code": code,
            "type": promo_doc["type"],
            "value": promo_doc.get("value"),
            "newSubscriptionEnd": (subscription or {}).get("currentPeriodEnd"),
        },
    )

    return RedemptionResult(
        promoCode=promo_doc_to_response(promo_doc),
        discount=get_discount_info(promo_doc),
        subscription=subscription,
    )


# Administration

def create_promo_code(request: PromoCodeCreateRequest, created_by: Optional[str] = None) -> PromoCodeResponse:
    now = utcnow()
    promo_doc = {
        "code": request.code,
        "type": request.type,
        "value": request.value,
        "description": request.description,
        "isActive": request.isActive,
        "usageLimit": request.usageLimit,
        "usedCount": 0,
        "usedBy": [],
        "validFrom": _naive(request.validFrom) or now,
        "validUntil": _naive(request.validUntil),
        "createdBy": created_by,
        "createdAt": now,
        "updatedAt": now,
    }

    try:
        result = _promo_codes().insert_one(promo_doc)
    except DuplicateKeyError:
        raise ValidationError(f"Promo code {request.code} already exists", status_code=409)

    promo_doc["_id"] = result.inserted_id
    logger.info(f"Promo code created: {request.code} ({request.type})")
    record_audit("promo", "promo_code_created", created_by, data={"code": request.code, "type": request.type})
    return promo_doc_to_response(promo_doc)


def list_promo_codes(page: int = 1, limit: int = 20, is_active: Optional[bool] = None) -> PromoCodeListResponse:
    query = {}
    if is_active is not None:
        query["isActive"] = is_active

    collection = _promo_codes()
    total = collection.count_documents(query)
    cursor = (
        collection.find(query)
        .sort("createdAt", DESCENDING)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return PromoCodeListResponse(
        promoCodes=[promo_doc_to_response(doc) for doc in cursor],
        total=total,
        page=page,
        limit=limit,
        totalPages=math.ceil(total / limit) if limit else 0,
    )


def get_promo_code(promo_id: str) -> PromoCodeResponse:
    promo_doc = _promo_codes().find_one({"_id": parse_object_id(promo_id, "promo code ID")})
    if not promo_doc:
        raise NotFoundError("Promo code not found")
    return promo_doc_to_response(promo_doc)


def update_promo_code(promo_id: str, request: PromoCodeUpdateRequest) -> PromoCodeResponse:
    """Apply an administrator edit, re-checking type/value and limit rules against the stored code"""
    collection = _promo_codes()
    promo_id_obj = parse_object_id(promo_id, "promo code ID")
    promo_doc = collection.find_one({"_id": promo_id_obj})
    if not promo_doc:
        raise NotFoundError("Promo code not found")

    updates = request.model_dump(exclude_unset=True)
    for key in ("validFrom", "validUntil"):
        if updates.get(key) is not None:
            updates[key] = _naive(updates[key])

    promo_type = updates.get("type", promo_doc["type"])
    if "value" not in updates and promo_type in NON_MONETARY_TYPES:
        updates["value"] = None
    value = updates.get("value", promo_doc.get("value"))
    error = check_value_for_type(promo_type, value)
    if error:
        raise ValidationError(error)

    valid_from = updates.get("validFrom", promo_doc.get("validFrom"))
    valid_until = updates.get("validUntil", promo_doc.get("validUntil"))
    if valid_from and valid_until and valid_until < valid_from:
        raise ValidationError("validUntil must not be before validFrom")

    usage_limit = updates.get("usageLimit")
    if usage_limit is not None and usage_limit < promo_doc.get("usedCount", 0):
        raise ValidationError("usageLimit cannot be lower than the number of redemptions")

    updates["updatedAt"] = utcnow()
    updated = collection.find_one_and_update(
        {"_id": promo_id_obj},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("Promo code not found")

    logger.info(f"Promo code updated: {updated['code']}")
    return promo_doc_to_response(updated)


def delete_promo_code(promo_id: str) -> None:
    result = _promo_codes().delete_one({"_id": parse_object_id(promo_id, "promo code ID")})
    if result.deleted_count == 0:
        raise NotFoundError("Promo code not found")
    logger.info(f"Promo code deleted: {promo_id}")


def _random_suffix(length: int = RANDOM_CODE_LENGTH) -> str:
    return "".join(secrets.choice(RANDOM_CODE_ALPHABET) for _ in range(length))


def insert_unique_code(promo_doc: dict, prefix: str = "") -> dict:
    """
    Give `promo_doc` a fresh `prefix + 6 random characters` code and insert it.

    Both an existing code and a unique-index violation on insert count as a
    collision; after PROMO_CODE_MAX_GENERATION_ATTEMPTS collisions the code
    is abandoned.

    Raises:
        ConcurrencyConflict: If no unique code was found
    """
    collection = _promo_codes()
    for _ in range(settings.PROMO_CODE_MAX_GENERATION_ATTEMPTS):
        code = f"{prefix}{_random_suffix()}"
        if collection.find_one({"code": code}, {"_id": 1}):
            continue
        candidate = dict(promo_doc, code=code)
        try:
            result = collection.insert_one(candidate)
        except DuplicateKeyError:
            continue
        candidate["_id"] = result.inserted_id
        return candidate

    raise ConcurrencyConflict("Unable to generate unique promo code")


def generate_promo_codes(request: BulkGenerateRequest, created_by: Optional[str] = None) -> BulkGenerateResult:
    """Generate `request.count` single-purpose codes; a code that cannot be made unique is skipped"""
    now = utcnow()
    template = {
        "type": request.type,
        "value": request.value,
        "description": request.description or f"Bulk generated {request.type} code",
        "isActive": True,
        "usageLimit": request.usageLimit,
        "usedCount": 0,
        "usedBy": [],
        "validFrom": now,
        "validUntil": _naive(request.validUntil),
        "createdBy": created_by,
        "createdAt": now,
        "updatedAt": now,
    }

    generated: List[PromoCodeResponse] = []
    failed = 0
    for _ in range(request.count):
        try:
            generated.append(promo_doc_to_response(insert_unique_code(template, request.prefix)))
        except ConcurrencyConflict as e:
            failed += 1
            logger.error(f"Error generating promo code with prefix '{request.prefix}': {e.reason}")

    logger.info(f"Generated {len(generated)} of {request.count} promo codes")
    record_audit(
        "promo", "promo_codes_generated", created_by,
        data={"type": request.type, "requested": request.count, "generated": len(generated), "failed": failed},
        status="success" if generated else "failure",
    )
    return BulkGenerateResult(
        promoCodes=generated,
        generated=len(generated),
        requested=request.count,
        failed=failed,
    )
