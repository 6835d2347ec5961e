"""
Reminder scheduler - cron-triggered progress reminders and trial expiry pushes
"""
import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.db.mongodb import require_collection, ACCOUNTS_COLLECTION
from app.models.notification import ReminderRunResult
from app.services import notification_service, progress_service
from app.utils.push_utils import PushDispatcher, MULTICAST_BATCH_SIZE
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

REMINDER_HOURS = (12, 18, 22, 23)
TRIAL_CHECK_HOUR = 10
TRIAL_REMINDER_WINDOW = timedelta(days=2)


class ReminderScheduler:
    """
    Owns an APScheduler BackgroundScheduler with one cron job per reminder
    slot plus the daily trial expiry check.

    Jobs run with max_instances=1 and coalesce=True, so a slow tick is never
    overlapped by the next one and missed ticks collapse into a single run.
    """

    def __init__(self, dispatcher: PushDispatcher, timezone: Optional[str] = None):
        self.dispatcher = dispatcher
        self.timezone = timezone or settings.REMINDER_TIMEZONE
        self._scheduler = BackgroundScheduler(timezone=self.timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self._scheduler.running:
            logger.info("Reminder scheduler already running")
            return

        for hour in REMINDER_HOURS:
            self._scheduler.add_job(
                self._run_progress_reminders,
                trigger=CronTrigger(hour=hour, minute=0, timezone=self.timezone),
                args=[hour],
                id=f"progress-reminder-{hour:02d}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self._scheduler.add_job(
            self._run_trial_expiry_check,
            trigger=CronTrigger(hour=TRIAL_CHECK_HOUR, minute=0, timezone=self.timezone),
            id="trial-expiry-check",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._scheduler.start()
        slots = ", ".join(f"{hour:02d}:00" for hour in REMINDER_HOURS)
        logger.info(
            f"Reminder scheduler started ({self.timezone}): reminders at {slots}, "
            f"trial check at {TRIAL_CHECK_HOUR:02d}:00"
        )

    def stop(self) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=False)
        logger.info("Reminder scheduler stopped")

    def job_ids(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def _run_progress_reminders(self, hour: int) -> None:
        try:
            result = self.send_progress_reminders(hour)
            logger.info(f"Progress reminder run finished: {result.model_dump()}")
        except Exception as e:
            logger.error(f"Progress reminder run for {hour:02d}:00 failed: {e}", exc_info=True)

    def _run_trial_expiry_check(self) -> None:
        try:
            result = self.send_trial_expiry_reminders()
            logger.info(f"Trial expiry check finished: {result.model_dump()}")
        except Exception as e:
            logger.error(f"Trial expiry check failed: {e}", exc_info=True)

    def send_progress_reminders(self, hour: int, now: Optional[datetime] = None) -> ReminderRunResult:
        """
        Push the `hour` reminder to every opted-in account that has not
        logged progress today.

        Returns:
            Counts for the run; failed batches are counted, not raised
        """
        now = now or utcnow()
        result = ReminderRunResult(job=f"progress-reminder-{hour:02d}", ranAt=now)
        slot = f"{hour:02d}:00"

        accounts = require_collection(ACCOUNTS_COLLECTION).find(
            {
                "isActive": True,
                "notifications.enabled": True,
                "notifications.reminderTimes": slot,
            },
            {"notifications.pushTokens": 1},
        )
        candidates = {}
        for account in accounts:
            tokens = (account.get("notifications") or {}).get("pushTokens") or []
            if tokens:
                candidates[str(account["_id"])] = tokens
        result.candidates = len(candidates)
        if not candidates:
            logger.info(f"No accounts to remind at {slot}")
            return result

        logged_today = progress_service.accounts_logged_on_day(candidates, now, self.timezone)
        result.skippedAlreadyLogged = len(logged_today)

        tokens = []
        seen = set()
        for account_id, account_tokens in candidates.items():
            if account_id in logged_today:
                continue
            result.notifiedAccounts += 1
            for token in account_tokens:
                if token not in seen:
                    seen.add(token)
                    tokens.append(token)
        result.tokens = len(tokens)
        if not tokens:
            return result

        title, body = notification_service.reminder_copy(hour)
        data = {"type": "progress_reminder", "hour": hour, "timestamp": now.isoformat()}
        for offset in range(0, len(tokens), MULTICAST_BATCH_SIZE):
            batch = tokens[offset:offset + MULTICAST_BATCH_SIZE]
            try:
                sent = self.dispatcher.send_multicast(batch, title, body, data)
            except UpstreamUnavailable as e:
                result.batchErrors += 1
                result.failureCount += len(batch)
                logger.error(f"Reminder batch of {len(batch)} tokens failed at {slot}: {e.reason}")
                continue
            result.successCount += sent.success_count
            result.failureCount += sent.failure_count

        logger.info(
            f"Sent {slot} reminders to {result.notifiedAccounts} accounts "
            f"({result.successCount} delivered, {result.failureCount} failed)"
        )
        return result

    def send_trial_expiry_reminders(self, now: Optional[datetime] = None) -> ReminderRunResult:
        """Warn trial accounts whose trial ends within the next two days"""
        now = now or utcnow()
        result = ReminderRunResult(job="trial-expiry-check", ranAt=now)

        accounts = require_collection(ACCOUNTS_COLLECTION).find(
            {
                "isActive": True,
                "subscription.status": "trial",
                "subscription.trialEndsAt": {"$gte": now, "$lte": now + TRIAL_REMINDER_WINDOW},
            },
            {"subscription.trialEndsAt": 1, "notifications.pushTokens": 1},
        )
        for account in accounts:
            tokens = (account.get("notifications") or {}).get("pushTokens") or []
            if not tokens:
                continue
            result.candidates += 1

            remaining = account["subscription"]["trialEndsAt"] - now
            days_left = math.ceil(remaining.total_seconds() / 86400)
            if days_left not in (1, 2):
                continue

            account_id = str(account["_id"])
            result.tokens += len(tokens)
            try:
                sent = notification_service.send_trial_expiry_reminder(
                    self.dispatcher, account_id, tokens, days_left
                )
            except UpstreamUnavailable as e:
                result.batchErrors += 1
                result.failureCount += len(tokens)
                logger.error(f"Trial expiry reminder for account {account_id} failed: {e.reason}")
                continue
            result.notifiedAccounts += 1
            result.successCount += sent.success_count
            result.failureCount += sent.failure_count

        logger.info(f"Trial expiry check: {result.notifiedAccounts} of {result.candidates} candidates notified")
        return result
