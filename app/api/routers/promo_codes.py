"""
Promo code API routes
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.auth import get_current_account, require_admin
from app.core.exceptions import InvalidRedemption
from app.models.promo_code import (
    PromoCodeCodeRequest,
    PromoCodeCreateRequest,
    PromoCodeUpdateRequest,
    BulkGenerateRequest,
    PromoCodeResponse,
    PromoValidationResult,
    RedemptionResult,
    PromoCodeListResponse,
    BulkGenerateResult,
)
from app.services import promo_code_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/promo-codes", tags=["promo-codes"])


@router.post("/apply", response_model=PromoValidationResult)
def apply_promo_code(body: PromoCodeCodeRequest):
    """Public check of whether a code is currently valid"""
    result = promo_code_service.validate_promo_code(body.code)
    if not result.valid:
        raise InvalidRedemption(result.reason)
    return result


@router.post("/bulk/generate", response_model=BulkGenerateResult)
def bulk_generate(body: BulkGenerateRequest, admin: dict = Depends(require_admin)):
    return promo_code_service.generate_promo_codes(body, created_by=str(admin["_id"]))


@router.post("/{code}/use", response_model=RedemptionResult)
def use_promo_code(code: str, account: dict = Depends(get_current_account)):
    """Redeem a code for the caller and apply its benefit"""
    return promo_code_service.redeem_promo_code(code, str(account["_id"]))


@router.post("", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
def create_promo_code(body: PromoCodeCreateRequest, admin: dict = Depends(require_admin)):
    return promo_code_service.create_promo_code(body, created_by=str(admin["_id"]))


@router.get("", response_model=PromoCodeListResponse)
def list_promo_codes(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    isActive: Optional[bool] = None,
    admin: dict = Depends(require_admin),
):
    return promo_code_service.list_promo_codes(page=page, limit=limit, is_active=isActive)


@router.get("/{promo_id}", response_model=PromoCodeResponse)
def get_promo_code(promo_id: str, admin: dict = Depends(require_admin)):
    return promo_code_service.get_promo_code(promo_id)


@router.put("/{promo_id}", response_model=PromoCodeResponse)
def update_promo_code(promo_id: str, body: PromoCodeUpdateRequest, admin: dict = Depends(require_admin)):
    return promo_code_service.update_promo_code(promo_id, body)


@router.delete("/{promo_id}")
def delete_promo_code(promo_id: str, admin: dict = Depends(require_admin)):
    promo_code_service.delete_promo_code(promo_id)
    return {"success": True, "message": "Promo code deleted successfully"}
