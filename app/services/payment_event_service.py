"""
Payment event processor - applies verified Stripe webhook events to local
subscription state.

Nothing from the request is trusted until the Stripe-Signature header has
been checked. After that every event is acknowledged; failures are logged
and audited instead of being returned to Stripe.
"""
import json
import logging
from typing import Callable, Dict, Optional, Union

import stripe

from app.core.config import settings
from app.core.exceptions import AccountResolutionFailure, SignatureInvalid
from app.models.subscription import WebhookResult
from app.services import account_service, notification_service
from app.services.audit_service import record_audit
from app.services.subscription_service import (
    fetch_subscription_snapshot,
    subscription_period_bounds,
    subscription_plan,
)
from app.utils.account_locks import account_lock
from app.utils.push_utils import PushDispatcher
from app.utils.time_utils import from_epoch, utcnow

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "trialing": "trial",
    "active": "active",
    "canceled": "canceled",
}


def map_subscription_status(provider_status: Optional[str]) -> str:
    """Stripe subscription status to local status; anything unrecognised is expired"""
    return STATUS_MAP.get(provider_status, "expired")


def subscription_snapshot_fields(subscription: dict) -> dict:
    """
    Local subscription fields carried by a Stripe subscription snapshot.

    Values are copied verbatim so applying the same snapshot twice writes the
    same record.
    """
    start, end = subscription_period_bounds(subscription)
    fields = {
        "status": map_subscription_status(subscription.get("status")),
        "stripeSubscriptionId": subscription.get("id"),
        "cancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end", False)),
        "currentPeriodStart": from_epoch(start),
        "currentPeriodEnd": from_epoch(end),
    }
    plan = subscription_plan(subscription)
    if plan:
        fields["plan"] = plan
    if subscription.get("canceled_at"):
        fields["canceledAt"] = from_epoch(subscription["canceled_at"])
    return fields


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Subscription referenced by an invoice (older and newer API shapes)"""
    subscription = invoice.get("subscription")
    if subscription:
        return subscription if isinstance(subscription, str) else subscription.get("id")
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


class PaymentEventProcessor:
    """
    Verifies and applies Stripe webhook events.

    Args:
        webhook_secret: Endpoint signing secret (defaults to STRIPE_WEBHOOK_SECRET)
        tolerance: Maximum signature age in seconds
        subscription_fetcher: Callable returning a subscription snapshot dict by id
        dispatcher: Push dispatcher for the subscription confirmation message
    """

    def __init__(
        self,
        webhook_secret: Optional[str] = None,
        tolerance: Optional[int] = None,
        subscription_fetcher: Optional[Callable[[str], dict]] = None,
        dispatcher: Optional[PushDispatcher] = None,
    ):
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        self.fetch_subscription = subscription_fetcher or fetch_subscription_snapshot
        self.dispatcher = dispatcher
        self._handlers: Dict[str, Callable[[dict, dict], WebhookResult]] = {
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    def verify(self, payload: Union[bytes, str], signature_header: Optional[str]) -> dict:
        """
        Check the Stripe-Signature header and parse the event.

        Raises:
            SignatureInvalid: On a missing secret or header, a bad or stale
                signature, or a payload that is not a JSON event
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
            raise SignatureInvalid("Webhook signing secret not configured")
        if not signature_header:
            raise SignatureInvalid("Missing Stripe-Signature header")

        try:
            payload_str = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError:
            raise SignatureInvalid("Invalid payload encoding")

        try:
            stripe.WebhookSignature.verify_header(
                payload_str, signature_header, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise SignatureInvalid("Invalid signature")

        try:
            event = json.loads(payload_str)
        except ValueError:
            raise SignatureInvalid("Invalid payload")
        if not isinstance(event, dict) or not event.get("type"):
            raise SignatureInvalid("Invalid payload")
        return event

    def handle_webhook(self, payload: Union[bytes, str], signature_header: Optional[str]) -> WebhookResult:
        event = self.verify(payload, signature_header)
        return self.process_event(event)

    def process_event(self, event: dict) -> WebhookResult:
        """
        Apply one verified event. Never raises.
        """
        event_type = event.get("type", "")
        event_id = event.get("id")
        data_object = (event.get("data") or {}).get("object") or {}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Ignoring unhandled Stripe event {event_type} ({event_id})")
            record_audit("payment", f"webhook.{event_type}", data={"eventId": event_id, "ignored": True})
            return WebhookResult(eventId=event_id, eventType=event_type)

        logger.info(f"Processing Stripe event {event_type} ({event_id})")
        try:
            return handler(event, data_object)
        except AccountResolutionFailure as e:
            logger.warning(f"Anomaly in {event_type} ({event_id}): {e.reason}")
            record_audit(
                "payment", f"webhook.{event_type}",
                data={"eventId": event_id, "customerId": data_object.get("customer"), "anomaly": e.reason},
                status="failure",
                level="warning",
                needs_review=True,
            )
            return WebhookResult(eventId=event_id, eventType=event_type, anomaly=e.reason)
        except Exception as e:
            logger.error(f"Error processing {event_type} ({event_id}): {e}", exc_info=True)
            record_audit(
                "payment", f"webhook.{event_type}",
                data={"eventId": event_id, "customerId": data_object.get("customer"), "error": str(e)},
                status="failure",
            )
            return WebhookResult(eventId=event_id, eventType=event_type, error=str(e))

    def _resolve_account(self, customer_id: Optional[str]) -> dict:
        account = account_service.get_account_by_customer_id(customer_id)
        if account is None:
            raise AccountResolutionFailure(f"No account mapped to Stripe customer {customer_id}")
        return account

    def _apply(self, event: dict, account: dict, fields: dict) -> WebhookResult:
        """Write `fields` under the account lock and audit the transition"""
        account_id = str(account["_id"])
        with account_lock(account_id):
            previous = account_service.get_account_by_id(account_id)
            previous_status = (previous.get("subscription") or {}).get("status")
            updated = account_service.apply_subscription_update(account_id, fields)
        new_status = (updated.get("subscription") or {}).get("status")

        logger.info(f"{event['type']}: account {account_id} {previous_status} -> {new_status}")
        record_audit(
            "payment", f"webhook.{event['type']}", account_id,
            data={"eventId": event.get("id"), "previousStatus": previous_status, "newStatus": new_status},
        )
        return WebhookResult(
            eventId=event.get("id"),
            eventType=event["type"],
            handled=True,
            accountId=account_id,
            previousStatus=previous_status,
            newStatus=new_status,
        )

    def _handle_subscription_updated(self, event: dict, subscription: dict) -> WebhookResult:
        account = self._resolve_account(subscription.get("customer"))
        return self._apply(event, account, subscription_snapshot_fields(subscription))

    def _handle_subscription_deleted(self, event: dict, subscription: dict) -> WebhookResult:
        account = self._resolve_account(subscription.get("customer"))
        fields = {"status": "expired", "canceledAt": utcnow()}
        return self._apply(event, account, fields)

    def _handle_payment_succeeded(self, event: dict, invoice: dict) -> WebhookResult:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info(f"Invoice {invoice.get('id')} has no subscription; nothing to apply")
            record_audit(
                "payment", f"webhook.{event['type']}",
                data={"eventId": event.get("id"), "invoiceId": invoice.get("id"), "ignored": True},
            )
            return WebhookResult(eventId=event.get("id"), eventType=event["type"])

        account = self._resolve_account(invoice.get("customer"))
        snapshot = self.fetch_subscription(subscription_id)
        fields = subscription_snapshot_fields(snapshot)
        fields["status"] = "active"

        result = self._apply(event, account, fields)
        if result.previousStatus == "trial":
            tokens = (account.get("notifications") or {}).get("pushTokens", [])
            notification_service.send_subscription_confirmation(self.dispatcher, result.accountId, tokens)
        return result

    def _handle_payment_failed(self, event: dict, invoice: dict) -> WebhookResult:
        account = self._resolve_account(invoice.get("customer"))
        account_id = str(account["_id"])
        status = (account.get("subscription") or {}).get("status")

        logger.warning(f"Payment failed for account {account_id} (invoice {invoice.get('id')})")
        record_audit(
            "payment", f"webhook.{event['type']}", account_id,
            data={
                "eventId": event.get("id"),
                "invoiceId": invoice.get("id"),
                "subscriptionId": invoice_subscription_id(invoice),
                "amount": invoice.get("amount_due"),
                "currency": invoice.get("currency"),
                "attemptCount": invoice.get("attempt_count"),
                "nextPaymentAttempt": from_epoch(invoice.get("next_payment_attempt")),
            },
            status="failure",
        )
        return WebhookResult(
            eventId=event.get("id"),
            eventType=event["type"],
            handled=True,
            accountId=account_id,
            previousStatus=status,
            newStatus=status,
        )
