"""
Application configuration and settings
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Settings read once from the environment at import time"""

    # Service
    APP_NAME: str = "Progress Tracker API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = _env_bool("DEBUG")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Origins of the Expo dev server and web preview
    _DEFAULT_CORS_ORIGINS: List[str] = [
        "http://localhost:8081",
        "http://localhost:19006",
        "http://127.0.0.1:8081",
        "http://127.0.0.1:19006",
    ]

    # MongoDB (the database name in the URI path wins over MONGODB_DB_NAME)
    MONGODB_URI: Optional[str] = os.getenv("MONGODB_URI")
    MONGODB_DB_NAME: str = os.getenv("MONGODB_DB_NAME", "ProgressTracker")

    # Redis: account cache and cross-worker account locks; optional
    REDIS_HOST: Optional[str] = os.getenv("REDIS_HOST")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_USERNAME: Optional[str] = os.getenv("REDIS_USERNAME")
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = _env_bool("REDIS_SSL")

    # Stripe: the test key wins when both are set
    STRIPE_API_KEY: Optional[str] = os.getenv("STRIPE_API_KEY")
    STRIPE_TEST_API_KEY: Optional[str] = os.getenv("STRIPE_TEST_API_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))
    STRIPE_PRICE_ID_MONTHLY: Optional[str] = os.getenv("STRIPE_PRICE_ID_MONTHLY")
    STRIPE_PRICE_ID_ANNUAL: Optional[str] = os.getenv("STRIPE_PRICE_ID_ANNUAL")

    # Firebase: ID token verification and FCM
    FIREBASE_PROJECT_ID: Optional[str] = os.getenv("FIREBASE_PROJECT_ID")
    FIREBASE_CLIENT_EMAIL: Optional[str] = os.getenv("FIREBASE_CLIENT_EMAIL")
    FIREBASE_PRIVATE_KEY: Optional[str] = os.getenv("FIREBASE_PRIVATE_KEY")
    FIREBASE_CREDENTIALS_PATH: Optional[str] = os.getenv("FIREBASE_CREDENTIALS_PATH")

    # One timeout for every outbound Stripe and FCM call
    PROVIDER_TIMEOUT_SECONDS: int = int(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))

    # Entitlements
    TRIAL_PERIOD_DAYS: int = int(os.getenv("TRIAL_PERIOD_DAYS", "3"))
    ACCOUNT_CACHE_TTL_SECONDS: int = int(os.getenv("ACCOUNT_CACHE_TTL_SECONDS", "900"))
    ACCOUNT_LOCK_TIMEOUT_SECONDS: int = int(os.getenv("ACCOUNT_LOCK_TIMEOUT_SECONDS", "30"))

    # Promo codes
    PROMO_CODE_MAX_GENERATION_ATTEMPTS: int = int(os.getenv("PROMO_CODE_MAX_GENERATION_ATTEMPTS", "10"))
    PROMO_REDEMPTION_MAX_ATTEMPTS: int = int(os.getenv("PROMO_REDEMPTION_MAX_ATTEMPTS", "5"))

    # Reminders; REMINDER_TIMEZONE also defines "today" for progress entries
    SCHEDULER_ENABLED: bool = _env_bool("SCHEDULER_ENABLED", "true")
    REMINDER_TIMEZONE: str = os.getenv("REMINDER_TIMEZONE", "UTC")


# Global settings instance
settings = Settings()


def get_cors_origins() -> List[str]:
    """Default origins plus any listed in CORS_ORIGINS (comma separated)"""
    extra = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()]
    origins = list(settings._DEFAULT_CORS_ORIGINS)
    for origin in extra:
        if origin not in origins:
            origins.append(origin)
    return origins
