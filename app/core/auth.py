"""
FastAPI dependencies for Firebase ID token authentication
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.exceptions import AuthenticationError, PermissionDenied
from app.services import account_service
from app.services.audit_service import record_audit
from app.utils.account_helpers import is_subscription_active, is_trial_expired
from app.utils.firebase_utils import verify_id_token

logger = logging.getLogger(__name__)

# HTTPBearer security scheme; missing headers are reported as our own 401
security = HTTPBearer(auto_error=False)


def get_current_account(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    FastAPI dependency to get the account for the bearer Firebase ID token.

    The account is created on first sight. The decoded claims are left on
    request.state.claims and request.state.account_created tells whether
    this request created the account.

    Usage:
        @router.get("/protected")
        def protected_route(account: dict = Depends(get_current_account)):
            return {"account_id": str(account["_id"])}

    Raises:
        AuthenticationError: If the token is missing or invalid
        PermissionDenied: If the account has been deactivated
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")

    try:
        claims = verify_id_token(credentials.credentials)
    except AuthenticationError as e:
        record_audit(
            "auth", "failed_login",
            data={"error": e.reason, "userAgent": request.headers.get("user-agent")},
            status="failure",
        )
        raise

    account, created = account_service.get_or_create_account(claims)
    if not account.get("isActive", True):
        raise PermissionDenied("Account is inactive")

    account_service.touch_last_active(str(account["_id"]))
    request.state.claims = claims
    request.state.account_created = created
    return account


def require_admin(request: Request, account: dict = Depends(get_current_account)) -> dict:
    """Only identities carrying the `admin` custom claim pass"""
    claims = getattr(request.state, "claims", {}) or {}
    if not claims.get("admin"):
        raise PermissionDenied("Admin access required")
    return account


def require_subscription(account: dict = Depends(get_current_account)) -> dict:
    """
    Entitlement gate: active subscription or an unexpired trial.

    Reads the account from MongoDB, never from the cache.
    """
    fresh = account_service.get_account_by_id(str(account["_id"]))
    if not is_subscription_active(fresh):
        status = (fresh.get("subscription") or {}).get("status")
        logger.info(
            f"Entitlement denied for account {fresh['_id']}: status={status}, trialExpired={is_trial_expired(fresh)}"
        )
        raise PermissionDenied("Active subscription required")
    return fresh
