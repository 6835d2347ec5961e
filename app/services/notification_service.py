"""
Notification service - message copy and the one-off pushes sent around the account lifecycle
"""
import logging
from typing import List, Optional, Tuple

from app.core.exceptions import UpstreamUnavailable
from app.models.notification import MulticastResult
from app.utils.push_utils import PushDispatcher

logger = logging.getLogger(__name__)

REMINDER_COPY = {
    12: ("🌟 Midday Progress Check!", "Take a moment to capture your fitness journey today! 📸"),
    18: ("💪 Evening Fitness Update!", "How did your workout go? Log your progress now! 🏋️‍♂️"),
    22: ("📸 Quick Progress Snap!", "Don't forget to track today's progress! Quick and easy! ✨"),
    23: ("⏰ Last Chance Today!", "Final reminder: Track your progress before midnight! 🌙"),
}
DEFAULT_REMINDER_COPY = ("💪 Track Your Progress!", "Time to track your fitness progress! 💪")

MOTIVATIONAL_MESSAGES = {
    3: ("🔥 3-Day Streak!", "You're on fire! Keep the momentum going!"),
    7: ("🌟 One Week Strong!", "Amazing consistency! You're building great habits!"),
    14: ("💪 Two Weeks of Power!", "Your dedication is inspiring! Keep pushing forward!"),
    30: ("🏆 30-Day Champion!", "Incredible milestone! You're a true fitness warrior!"),
    60: ("🚀 60-Day Legend!", "Outstanding commitment! You're unstoppable!"),
    100: ("👑 100-Day Master!", "Legendary achievement! You've built an unbreakable habit!"),
}


def reminder_copy(hour: int) -> Tuple[str, str]:
    """Title and body for the progress reminder sent at `hour`"""
    return REMINDER_COPY.get(hour, DEFAULT_REMINDER_COPY)


def trial_expiry_copy(days_left: int) -> Tuple[str, str]:
    if days_left == 1:
        return "⏰ Trial expires tomorrow!", "Don't lose your progress! Upgrade to premium now."
    return (
        f"⏰ {days_left} days left in trial!",
        f"Continue your fitness journey with premium features. {days_left} days remaining.",
    )


def send_trial_expiry_reminder(
    dispatcher: PushDispatcher,
    account_id: str,
    tokens: List[str],
    days_left: int,
) -> MulticastResult:
    """Raises UpstreamUnavailable so the scheduler can count the failure"""
    title, body = trial_expiry_copy(days_left)
    result = dispatcher.send_multicast(
        tokens, title, body,
        {"type": "trial_expiry", "userId": account_id, "daysLeft": days_left, "action": "upgrade"},
    )
    logger.info(f"Sent trial expiry reminder to account {account_id} ({days_left} days left)")
    return result


def _send_best_effort(
    dispatcher: Optional[PushDispatcher],
    account_id: str,
    tokens: List[str],
    title: str,
    body: str,
    data: dict,
    label: str,
) -> bool:
    if dispatcher is None or not tokens:
        return False
    try:
        dispatcher.send_multicast(tokens, title, body, data)
    except UpstreamUnavailable as e:
        logger.error(f"Error sending {label} to account {account_id}: {e.reason}")
        return False
    logger.info(f"Sent {label} to account {account_id}")
    return True


def send_welcome_notification(dispatcher: Optional[PushDispatcher], account_id: str, tokens: List[str]) -> bool:
    return _send_best_effort(
        dispatcher, account_id, tokens,
        "🎉 Welcome to Gains!",
        "Start your fitness journey today! Take your first progress photos.",
        {"type": "welcome", "userId": account_id, "action": "track_progress"},
        "welcome notification",
    )


def send_subscription_confirmation(
    dispatcher: Optional[PushDispatcher],
    account_id: str,
    tokens: List[str],
) -> bool:
    return _send_best_effort(
        dispatcher, account_id, tokens,
        "🎉 Welcome to Premium!",
        "You now have unlimited access to all features. Keep crushing your goals!",
        {"type": "subscription_confirmed", "userId": account_id, "action": "track_progress"},
        "subscription confirmation",
    )


def send_motivational_message(
    dispatcher: Optional[PushDispatcher],
    account_id: str,
    tokens: List[str],
    streak: int,
) -> bool:
    """Only milestone streaks (3, 7, 14, 30, 60, 100 days) get a message"""
    if streak not in MOTIVATIONAL_MESSAGES:
        return False
    title, body = MOTIVATIONAL_MESSAGES[streak]
    return _send_best_effort(
        dispatcher, account_id, tokens, title, body,
        {"type": "motivational", "userId": account_id, "streak": streak, "action": "view_progress"},
        f"{streak}-day streak message",
    )


def send_to_accounts(
    dispatcher: PushDispatcher,
    accounts: List[dict],
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> MulticastResult:
    """Multicast to every push token of the given accounts (admin sends)"""
    tokens = []
    for account in accounts:
        for token in (account.get("notifications") or {}).get("pushTokens", []):
            if token not in tokens:
                tokens.append(token)
    return dispatcher.send_multicast(tokens, title, body, data)
