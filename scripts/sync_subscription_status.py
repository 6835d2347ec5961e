#!/usr/bin/env python3
"""
Script to reconcile an account's subscription with Stripe.

This script:
1. Loads the account's subscription record from MongoDB
2. Fetches the authoritative subscription from Stripe
3. Feeds it through the webhook event processor as a synthetic
   customer.subscription.updated (or .deleted if Stripe no longer has it),
   so the same mapping, locking and audit rules apply as for real webhooks

Usage:
    python scripts/sync_subscription_status.py [account_id] [--dry-run]

    If account_id is not provided, it will prompt for it.
"""

import json
import sys
import logging
from pathlib import Path
from typing import Optional

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import stripe

from app.core.exceptions import AppError
from app.core.logging_config import setup_logging
from app.db.mongodb import connect_to_mongodb, close_mongodb_connection
from app.services import account_service
from app.services.payment_event_service import PaymentEventProcessor, subscription_snapshot_fields
from app.services.subscription_service import configure_stripe
from app.utils.time_utils import utcnow

setup_logging()
logger = logging.getLogger(__name__)

LIVE_STATUSES = ("active", "trialing", "past_due")


def get_user_input(prompt: str, default: Optional[str] = None) -> Optional[str]:
    """Get user input with optional default value."""
    full_prompt = f"{prompt} [{default}]: " if default else f"{prompt}: "
    user_input = input(full_prompt).strip()
    return user_input if user_input else default


def _find_live_subscription(customer_id: str) -> Optional[dict]:
    """Most recent live subscription for a customer, if any"""
    subscriptions = stripe.Subscription.list(customer=customer_id, status="all", limit=10)
    live = [s for s in subscriptions.data if s.status in LIVE_STATUSES]
    if not live:
        return None
    return json.loads(str(max(live, key=lambda s: s.created)))


def build_sync_event(account: dict) -> Optional[dict]:
    """
    Synthetic webhook event describing Stripe's current view of the account

    Returns:
        The event, or None if Stripe has nothing for this account
    """
    subscription_record = account.get("subscription") or {}
    customer_id = subscription_record.get("stripeCustomerId")
    subscription_id = subscription_record.get("stripeSubscriptionId")
    if not customer_id:
        logger.info("Account has no Stripe customer; nothing to reconcile")
        return None

    event_id = f"sync_{account['_id']}_{int(utcnow().timestamp())}"

    if subscription_id:
        try:
            snapshot = stripe.Subscription.retrieve(subscription_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) != "resource_missing":
                raise
            logger.warning(f"Subscription {subscription_id} no longer exists in Stripe")
            return {
                "id": event_id,
                "type": "customer.subscription.deleted",
                "data": {"object": {"id": subscription_id, "customer": customer_id}},
            }
        snapshot = json.loads(str(snapshot))
    else:
        snapshot = _find_live_subscription(customer_id)
        if snapshot is None:
            logger.info(f"No live subscriptions in Stripe for customer {customer_id}")
            return None

    return {"id": event_id, "type": "customer.subscription.updated", "data": {"object": snapshot}}


def sync_account_subscription(account_id: str, dry_run: bool = False) -> dict:
    """
    Reconcile one account with Stripe.

    Returns:
        Dictionary with the local record, the Stripe-derived fields and the outcome
    """
    account = account_service.get_account_by_id(account_id)
    local = account.get("subscription") or {}
    logger.info(f"Checking subscription for account {account_id} ({account.get('email', 'unknown')})")
    logger.info(f"  Local status: {local.get('status')}, period end: {local.get('currentPeriodEnd')}")

    result = {"account_id": account_id, "local": local, "stripe": None, "needs_update": False, "applied": False}

    event = build_sync_event(account)
    if event is None:
        return result

    data_object = event["data"]["object"]
    if event["type"] == "customer.subscription.updated":
        expected = subscription_snapshot_fields(data_object)
    else:
        expected = {"status": "expired"}
    result["stripe"] = expected

    result["needs_update"] = any(local.get(key) != value for key, value in expected.items())
    if not result["needs_update"]:
        logger.info("✅ Subscription status is in sync")
        return result

    logger.warning(f"Mismatch: local={ {k: local.get(k) for k in expected} } stripe={expected}")
    if dry_run:
        logger.info("Dry run: not applying changes")
        return result

    outcome = PaymentEventProcessor().process_event(event)
    result["applied"] = outcome.handled
    result["outcome"] = outcome.model_dump()
    logger.info(f"Applied {event['type']}: {outcome.previousStatus} -> {outcome.newStatus}")
    return result


def main():
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    dry_run = "--dry-run" in sys.argv

    account_id = args[0] if args else get_user_input("Account ID")
    if not account_id:
        logger.error("No account ID provided")
        sys.exit(1)

    if not connect_to_mongodb():
        logger.error("Failed to connect to MongoDB")
        sys.exit(1)
    if not configure_stripe():
        logger.error("Stripe is not configured")
        sys.exit(1)

    try:
        result = sync_account_subscription(account_id, dry_run=dry_run)
    except (AppError, stripe.StripeError) as e:
        logger.error(f"Sync failed: {e}")
        sys.exit(1)
    finally:
        close_mongodb_connection()

    print(result)


if __name__ == "__main__":
    main()
