"""
Subscription service - Stripe integration for subscription management.

Only the Stripe customer and subscription references are recorded locally
here; the subscription status follows from verified webhooks.
"""

import json
import logging
from typing import Optional

import stripe

from app.core.config import settings
from app.core.exceptions import ValidationError, NotFoundError, UpstreamUnavailable
from app.models.subscription import CreateSubscriptionResponse, SubscriptionDetails
from app.services import account_service
from app.services.audit_service import record_audit
from app.utils.time_utils import from_epoch

logger = logging.getLogger(__name__)

PLANS = ("monthly", "yearly")


def configure_stripe() -> bool:
    """
    Set the Stripe API key and bound every Stripe call by PROVIDER_TIMEOUT_SECONDS

    Returns:
        True if an API key is configured
    """
    # Use test key if available, otherwise use production key
    stripe_api_key = settings.STRIPE_TEST_API_KEY or settings.STRIPE_API_KEY
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    # A timed-out call is reported to the caller, never retried by the SDK
    stripe.max_network_retries = 0
    if not stripe_api_key:
        logger.warning("Stripe API key not found in environment variables")
        return False
    stripe.api_key = stripe_api_key
    logger.info("Stripe API key configured")
    return True


def get_price_id(plan: str) -> str:
    if plan not in PLANS:
        raise ValidationError(f"plan must be one of {', '.join(PLANS)}")
    price_id = settings.STRIPE_PRICE_ID_MONTHLY if plan == "monthly" else settings.STRIPE_PRICE_ID_ANNUAL
    if not price_id:
        raise UpstreamUnavailable(f"No Stripe price configured for the {plan} plan")
    return price_id


def create_stripe_customer(account: dict) -> str:
    """
    Create a Stripe customer for the account

    Returns:
        Stripe customer ID
    """
    account_id = str(account["_id"])
    try:
        customer = stripe.Customer.create(
            email=account.get("email"),
            name=account.get("displayName"),
            metadata={"userId": account_id},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating customer: {e}")
        record_audit("payment", "create_customer", account_id, data={"error": str(e)}, status="failure")
        raise UpstreamUnavailable("Failed to create Stripe customer")

    logger.info(f"Created Stripe customer {customer.id} for account {account_id}")
    record_audit("payment", "create_customer", account_id, data={"customerId": customer.id})
    return customer.id


def create_subscription(account: dict, plan: str) -> CreateSubscriptionResponse:
    """
    Create a Stripe subscription with the configured trial.

    The customer and subscription ids are stored on the account; the status
    is left for the customer.subscription.* webhooks to set.
    """
    account_id = str(account["_id"])
    price_id = get_price_id(plan)
    subscription_record = account.get("subscription") or {}

    customer_id = subscription_record.get("stripeCustomerId")
    if not customer_id:
        customer_id = create_stripe_customer(account)
        account_service.set_stripe_references(account_id, customer_id=customer_id)

    try:
        subscription = stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": price_id}],
            trial_period_days=settings.TRIAL_PERIOD_DAYS,
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent"],
            metadata={"userId": account_id},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating subscription: {e}")
        record_audit("subscription", "subscription_created", account_id, data={"error": str(e)}, status="failure")
        raise UpstreamUnavailable("Failed to create subscription")

    account_service.set_stripe_references(account_id, subscription_id=subscription.id)

    client_secret = None
    latest_invoice = subscription.get("latest_invoice")
    if latest_invoice and not isinstance(latest_invoice, str):
        payment_intent = latest_invoice.get("payment_intent")
        if payment_intent and not isinstance(payment_intent, str):
            client_secret = payment_intent.get("client_secret")

    logger.info(f"Created subscription {subscription.id} for account {account_id}")
    record_audit(
        "subscription", "subscription_created", account_id,
        data={"subscriptionId": subscription.id, "customerId": customer_id, "plan": plan, "status": subscription.status},
    )
    return CreateSubscriptionResponse(
        subscriptionId=subscription.id,
        status=subscription.status,
        clientSecret=client_secret,
        trialEnd=from_epoch(subscription.get("trial_end")),
    )


def cancel_subscription(account: dict, cancel_at_period_end: bool = True) -> dict:
    """
    Cancel at period end, or immediately.

    Returns:
        Stripe subscription snapshot as a plain dict
    """
    account_id = str(account["_id"])
    subscription_id = (account.get("subscription") or {}).get("stripeSubscriptionId")
    if not subscription_id:
        raise ValidationError("No active subscription found")

    try:
        if cancel_at_period_end:
            subscription = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        else:
            subscription = stripe.Subscription.cancel(subscription_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe error canceling subscription: {e}")
        record_audit("subscription", "subscription_canceled", account_id, data={"error": str(e)}, status="failure")
        raise UpstreamUnavailable("Failed to cancel subscription")

    logger.info(
        f"Canceled subscription {subscription_id} for account {account_id} (at period end={cancel_at_period_end})"
    )
    record_audit(
        "subscription", "subscription_canceled", account_id,
        data={"subscriptionId": subscription_id, "cancelAtPeriodEnd": cancel_at_period_end, "reason": "user_request"},
    )
    return json.loads(str(subscription))


def fetch_subscription_snapshot(subscription_id: str) -> dict:
    """
    Retrieve a subscription from Stripe as a plain dict

    Raises:
        UpstreamUnavailable: If Stripe errors or times out
    """
    try:
        subscription = stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe error retrieving subscription {subscription_id}: {e}")
        raise UpstreamUnavailable("Failed to retrieve subscription from Stripe")
    return json.loads(str(subscription))


def get_subscription_details(account: dict) -> SubscriptionDetails:
    subscription_id = (account.get("subscription") or {}).get("stripeSubscriptionId")
    if not subscription_id:
        raise NotFoundError("No subscription found")

    snapshot = fetch_subscription_snapshot(subscription_id)
    start, end = subscription_period_bounds(snapshot)
    return SubscriptionDetails(
        id=snapshot["id"],
        status=snapshot["status"],
        currentPeriodStart=from_epoch(start),
        currentPeriodEnd=from_epoch(end),
        cancelAtPeriodEnd=bool(snapshot.get("cancel_at_period_end", False)),
        canceledAt=from_epoch(snapshot.get("canceled_at")),
        trialEnd=from_epoch(snapshot.get("trial_end")),
    )


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_period_bounds(subscription: dict):
    """
    (current_period_start, current_period_end) epoch seconds.

    Newer Stripe API versions carry the period on the subscription items
    instead of the subscription.
    """
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return start, end


def subscription_plan(subscription: dict) -> Optional[str]:
    """monthly/yearly from the first item's price interval, None if unknown"""
    item = _first_item(subscription)
    price = item.get("price") or item.get("plan") or {}
    interval = (price.get("recurring") or {}).get("interval") or price.get("interval")
    return {"month": "monthly", "year": "yearly"}.get(interval)
