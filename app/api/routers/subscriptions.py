"""
Subscription management API routes
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from app.api.dependencies import get_payment_processor
from app.core.auth import get_current_account
from app.core.exceptions import InvalidRedemption
from app.models.promo_code import PromoCodeCodeRequest, PromoValidationResult
from app.models.subscription import (
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    CancelRequest,
    SubscriptionDetails,
)
from app.services import account_service, subscription_service
from app.services.audit_service import record_audit
from app.services.payment_event_service import PaymentEventProcessor
from app.services.promo_code_service import validate_promo_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.post("/create", response_model=CreateSubscriptionResponse)
def create_subscription(body: CreateSubscriptionRequest, account: dict = Depends(get_current_account)):
    """
    Create a Stripe subscription (with trial) for the caller.

    Returns the payment intent client secret for the mobile PaymentSheet.
    The local status changes when Stripe reports it via webhook.
    """
    fresh = account_service.get_account_by_id(str(account["_id"]))
    logger.info(f"Creating {body.plan} subscription for account {fresh['_id']}")
    return subscription_service.create_subscription(fresh, body.plan)


@router.post("/promo-code", response_model=PromoValidationResult)
def check_promo_code(body: PromoCodeCodeRequest, account: dict = Depends(get_current_account)):
    """Validate a promo code for the caller without redeeming it"""
    account_id = str(account["_id"])
    result = validate_promo_code(body.code, account_id)
    if not result.valid:
        raise InvalidRedemption(result.reason)

    record_audit(
        "promo", "promo_code_validated", account_id,
        data={"code": body.code, "discount": result.discount.model_dump()},
    )
    return result


@router.post("/cancel")
def cancel_subscription(body: CancelRequest, account: dict = Depends(get_current_account)):
    fresh = account_service.get_account_by_id(str(account["_id"]))
    subscription_service.cancel_subscription(fresh, cancel_at_period_end=body.cancelAtPeriodEnd)
    return {
        "success": True,
        "message": (
            "Subscription will be canceled at period end"
            if body.cancelAtPeriodEnd
            else "Subscription canceled immediately"
        ),
    }


@router.get("/details", response_model=SubscriptionDetails)
def subscription_details(account: dict = Depends(get_current_account)):
    """Live subscription snapshot from Stripe"""
    fresh = account_service.get_account_by_id(str(account["_id"]))
    return subscription_service.get_subscription_details(fresh)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    processor: PaymentEventProcessor = Depends(get_payment_processor),
):
    """
    Stripe webhook endpoint.

    The raw body is needed for signature verification. A bad signature is a
    400; once verified, the event is always acknowledged.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    result = await run_in_threadpool(processor.handle_webhook, payload, signature)
    logger.info(
        f"Webhook {result.eventType} ({result.eventId}) handled={result.handled} "
        f"anomaly={result.anomaly} error={result.error}"
    )
    return {"received": True}
