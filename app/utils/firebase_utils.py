"""
Firebase Admin SDK setup (identity verification and push delivery)
"""
import logging
from typing import Optional, Dict, Any

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

from app.core.config import settings
from app.core.exceptions import AuthenticationError, UpstreamUnavailable

logger = logging.getLogger(__name__)

_firebase_app: Optional[firebase_admin.App] = None


def _build_credential():
    """Service-account credential from a file path or from the individual env fields"""
    if settings.FIREBASE_CREDENTIALS_PATH:
        return credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
    if settings.FIREBASE_CLIENT_EMAIL and settings.FIREBASE_PRIVATE_KEY:
        return credentials.Certificate({
            "type": "service_account",
            "project_id": settings.FIREBASE_PROJECT_ID,
            "client_email": settings.FIREBASE_CLIENT_EMAIL,
            # Keys pasted into env files carry literal "\n"
            "private_key": settings.FIREBASE_PRIVATE_KEY.replace("\\n", "\n"),
            "token_uri": "https://oauth2.googleapis.com/token",
        })
    # Application default credentials
    return None


def initialize_firebase() -> Optional[firebase_admin.App]:
    """
    Initialize the default Firebase app once.

    Returns:
        The Firebase app, or None if FIREBASE_PROJECT_ID is not configured
    """
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    if not settings.FIREBASE_PROJECT_ID:
        logger.warning("FIREBASE_PROJECT_ID not set. Authentication and push notifications are disabled.")
        return None

    try:
        _firebase_app = firebase_admin.initialize_app(
            credential=_build_credential(),
            options={
                "projectId": settings.FIREBASE_PROJECT_ID,
                "httpTimeout": settings.PROVIDER_TIMEOUT_SECONDS,
            },
        )
    except ValueError:
        # Already initialized elsewhere in this process
        _firebase_app = firebase_admin.get_app()

    logger.info(f"Firebase Admin SDK initialized for project: {settings.FIREBASE_PROJECT_ID}")
    return _firebase_app


def get_firebase_app() -> firebase_admin.App:
    app = initialize_firebase()
    if app is None:
        raise UpstreamUnavailable("Firebase is not configured")
    return app


def verify_id_token(id_token: str) -> Dict[str, Any]:
    """
    Verify a Firebase ID token and return its decoded claims

    Raises:
        AuthenticationError: If the token is invalid, expired or revoked
        UpstreamUnavailable: If Firebase is not configured
    """
    app = get_firebase_app()
    try:
        return firebase_auth.verify_id_token(id_token, app=app)
    except firebase_auth.ExpiredIdTokenError:
        raise AuthenticationError("Token has expired")
    except firebase_auth.RevokedIdTokenError:
        raise AuthenticationError("Token has been revoked")
    except (firebase_auth.InvalidIdTokenError, ValueError) as e:
        logger.warning(f"Firebase token validation failed: {e}")
        raise AuthenticationError("Invalid token")
    except firebase_auth.CertificateFetchError as e:
        logger.error(f"Could not fetch Firebase certificates: {e}")
        raise UpstreamUnavailable("Identity provider unavailable")
