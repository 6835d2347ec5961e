"""Pydantic models for request/response validation"""

# Import all models for easy access
from app.models.account import (
    SubscriptionRecord,
    NotificationRecord,
    LoginRequest,
    LogoutRequest,
    UpdatePushTokenRequest,
    AccountResponse,
    SubscriptionStatusResponse,
)

from app.models.promo_code import (
    DiscountInfo,
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

from app.models.subscription import (
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    CancelRequest,
    SubscriptionDetails,
    WebhookResult,
)

from app.models.notification import (
    NotificationSettingsRequest,
    NotificationSettingsResponse,
    SendNotificationRequest,
    MulticastResult,
    ReminderRunResult,
)

from app.models.progress import (
    ProgressCreateRequest,
    ProgressResponse,
    ProgressListResponse,
)

__all__ = [
    # Account models
    "SubscriptionRecord",
    "NotificationRecord",
    "LoginRequest",
    "LogoutRequest",
    "UpdatePushTokenRequest",
    "AccountResponse",
    "SubscriptionStatusResponse",
    # Promo code models
    "DiscountInfo",
    "PromoCodeCodeRequest",
    "PromoCodeCreateRequest",
    "PromoCodeUpdateRequest",
    "BulkGenerateRequest",
    "PromoCodeResponse",
    "PromoValidationResult",
    "RedemptionResult",
    "PromoCodeListResponse",
    "BulkGenerateResult",
    # Subscription models
    "CreateSubscriptionRequest",
    "CreateSubscriptionResponse",
    "CancelRequest",
    "SubscriptionDetails",
    "WebhookResult",
    # Notification models
    "NotificationSettingsRequest",
    "NotificationSettingsResponse",
    "SendNotificationRequest",
    "MulticastResult",
    "ReminderRunResult",
    # Progress models
    "ProgressCreateRequest",
    "ProgressResponse",
    "ProgressListResponse",
]
