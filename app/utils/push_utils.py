"""
Push notification dispatch through Firebase Cloud Messaging
"""
import logging
from typing import Optional, Dict, Any, List

from firebase_admin import messaging
from firebase_admin.exceptions import FirebaseError

from app.core.exceptions import UpstreamUnavailable
from app.models.notification import MulticastResult
from app.services.audit_service import record_audit
from app.utils.firebase_utils import get_firebase_app

logger = logging.getLogger(__name__)

# FCM accepts at most 500 tokens per multicast request
MULTICAST_BATCH_SIZE = 500


def _stringify_data(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """FCM data payloads only carry string values"""
    if not data:
        return {}
    return {str(key): str(value) for key, value in data.items() if value is not None}


class PushDispatcher:
    """
    Sends pushes via firebase_admin.messaging.

    Call timeouts come from the Firebase app's httpTimeout option.
    """

    def __init__(self, app=None):
        self._app = app

    @property
    def app(self):
        if self._app is None:
            self._app = get_firebase_app()
        return self._app

    def send(self, token: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> str:
        """
        Send one push to one device token

        Returns:
            The FCM message id

        Raises:
            UpstreamUnavailable: If FCM rejects the call or times out
        """
        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data=_stringify_data(data),
            token=token,
        )
        try:
            message_id = messaging.send(message, app=self.app)
        except (FirebaseError, ValueError) as e:
            logger.error(f"Error sending push notification: {e}")
            record_audit(
                "notification", "push.send",
                data={"title": title, "error": str(e)},
                status="failure",
            )
            raise UpstreamUnavailable(f"Push delivery failed: {e}")

        logger.info(f"Push notification sent: {message_id}")
        record_audit("notification", "push.send", data={"title": title, "messageId": message_id})
        return message_id

    def send_multicast(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> MulticastResult:
        """
        Send the same push to many tokens, 500 per request.

        Per-token failures are counted, not raised.

        Raises:
            UpstreamUnavailable: If a whole batch request fails
        """
        result = MulticastResult()
        if not tokens:
            return result

        payload = _stringify_data(data)
        for start in range(0, len(tokens), MULTICAST_BATCH_SIZE):
            chunk = tokens[start:start + MULTICAST_BATCH_SIZE]
            message = messaging.MulticastMessage(
                notification=messaging.Notification(title=title, body=body),
                data=payload,
                tokens=chunk,
            )
            try:
                response = messaging.send_each_for_multicast(message, app=self.app)
            except (FirebaseError, ValueError) as e:
                logger.error(f"Error sending multicast batch of {len(chunk)} tokens: {e}")
                record_audit(
                    "notification", "push.multicast",
                    data={"title": title, "tokens": len(chunk), "error": str(e)},
                    status="failure",
                )
                raise UpstreamUnavailable(f"Push delivery failed: {e}")

            result.success_count += response.success_count
            result.failure_count += response.failure_count
            for token, send_response in zip(chunk, response.responses):
                if not send_response.success:
                    result.failed_tokens.append(token)

        logger.info(
            f"Multicast sent: {result.success_count} successful, {result.failure_count} failed"
        )
        record_audit(
            "notification", "push.multicast",
            data={
                "title": title,
                "tokens": len(tokens),
                "successCount": result.success_count,
                "failureCount": result.failure_count,
            },
            status="success" if result.success_count or not result.failure_count else "failure",
        )
        return result
