"""
Subscription-related Pydantic models
"""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class CreateSubscriptionRequest(BaseModel):
    """Request to start a subscription (with trial) for the calling account"""
    plan: str = "monthly"  # monthly, yearly


class CreateSubscriptionResponse(BaseModel):
    subscriptionId: str
    status: str
    clientSecret: Optional[str] = None
    trialEnd: Optional[datetime] = None


class CancelRequest(BaseModel):
    """Request to cancel subscription"""
    cancelAtPeriodEnd: bool = True  # If False, cancel immediately


class SubscriptionDetails(BaseModel):
    """Live subscription snapshot from Stripe"""
    id: str
    status: str
    currentPeriodStart: Optional[datetime] = None
    currentPeriodEnd: Optional[datetime] = None
    cancelAtPeriodEnd: bool = False
    canceledAt: Optional[datetime] = None
    trialEnd: Optional[datetime] = None


class WebhookResult(BaseModel):
    """Outcome of processing one verified payment event"""
    received: bool = True
    eventId: Optional[str] = None
    eventType: str
    handled: bool = False
    accountId: Optional[str] = None
    previousStatus: Optional[str] = None
    newStatus: Optional[str] = None
    anomaly: Optional[str] = None
    error: Optional[str] = None
