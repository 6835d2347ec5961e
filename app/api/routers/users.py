"""
User profile API routes
"""
import logging

from fastapi import APIRouter, Depends

from app.core.auth import get_current_account
from app.models.account import ProfileUpdateRequest, AccountResponse
from app.services import account_service
from app.services.audit_service import record_audit
from app.utils.account_helpers import account_doc_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/profile", response_model=AccountResponse)
def get_profile(account: dict = Depends(get_current_account)):
    # Skip the cached copy so the profile reflects the latest write
    fresh = account_service.get_account_by_id(str(account["_id"]))
    return account_doc_to_response(fresh)


@router.put("/profile", response_model=AccountResponse)
def update_profile(body: ProfileUpdateRequest, account: dict = Depends(get_current_account)):
    account_id = str(account["_id"])
    updated = account_service.update_profile(account_id, body)
    record_audit(
        "user_action", "profile_update", account_id,
        data={"updatedFields": sorted(body.model_dump(exclude_unset=True, exclude_none=True))},
    )
    return account_doc_to_response(updated)
