"""
Reminder scheduler tests: selection, dedup against today's progress, trial warnings
"""
from datetime import datetime, timedelta

import pytest

from app.services.reminder_scheduler import ReminderScheduler, REMINDER_HOURS

EVENING = datetime(2025, 1, 15, 18, 0, 0)


def log_progress(db, account, when):
    db.progress.insert_one({
        "accountId": str(account["_id"]),
        "date": when.replace(hour=0, minute=0, second=0),
        "weight": 80.0,
        "createdAt": when,
    })


@pytest.fixture
def scheduler(dispatcher):
    return ReminderScheduler(dispatcher, timezone="UTC")


class TestProgressReminders:
    def test_only_accounts_without_progress_today_are_reminded(self, scheduler, dispatcher, make_account, db):
        waiting = make_account(notifications={"pushTokens": ["tok-a"], "reminderTimes": ["18:00", "22:00"]})
        logged = make_account(notifications={"pushTokens": ["tok-b"], "reminderTimes": ["18:00"]})
        log_progress(db, logged, EVENING)

        result = scheduler.send_progress_reminders(18, now=EVENING)

        assert result.candidates == 2
        assert result.skippedAlreadyLogged == 1
        assert result.notifiedAccounts == 1
        assert len(dispatcher.multicasts) == 1
        push = dispatcher.multicasts[0]
        assert push["tokens"] == ["tok-a"]
        assert push["title"] == "💪 Evening Fitness Update!"
        assert push["data"]["type"] == "progress_reminder"
        assert push["data"]["hour"] == 18

        # Logging later that day silences the 22:00 slot
        log_progress(db, waiting, EVENING)
        later = scheduler.send_progress_reminders(22, now=EVENING + timedelta(hours=4))
        assert later.notifiedAccounts == 0
        assert len(dispatcher.multicasts) == 1

    def test_yesterdays_progress_does_not_count(self, scheduler, dispatcher, make_account, db):
        account = make_account(notifications={"pushTokens": ["tok-a"]})
        log_progress(db, account, EVENING - timedelta(days=1))

        result = scheduler.send_progress_reminders(18, now=EVENING)

        assert result.notifiedAccounts == 1

    def test_opted_out_inactive_and_tokenless_accounts_are_skipped(self, scheduler, dispatcher, make_account):
        make_account(notifications={"pushTokens": ["tok-off"], "enabled": False})
        make_account(notifications={"pushTokens": ["tok-gone"]}, isActive=False)
        make_account(notifications={"pushTokens": []})
        make_account(notifications={"pushTokens": ["tok-noon"], "reminderTimes": ["12:00"]})

        result = scheduler.send_progress_reminders(18, now=EVENING)

        assert result.candidates == 0
        assert dispatcher.multicasts == []

    def test_shared_tokens_are_sent_once(self, scheduler, dispatcher, make_account):
        make_account(notifications={"pushTokens": ["shared", "tok-1"]})
        make_account(notifications={"pushTokens": ["shared"]})

        result = scheduler.send_progress_reminders(18, now=EVENING)

        assert result.tokens == 2
        assert sorted(dispatcher.multicasts[0]["tokens"]) == ["shared", "tok-1"]

    def test_failed_batch_is_counted_and_run_continues(self, make_account, failing_dispatcher):
        dispatcher = failing_dispatcher
        make_account(notifications={"pushTokens": [f"tok-{i}" for i in range(600)]})
        scheduler = ReminderScheduler(dispatcher, timezone="UTC")

        result = scheduler.send_progress_reminders(18, now=EVENING)

        assert result.batchErrors == 1
        assert result.failureCount == 500
        assert result.successCount == 100
        assert len(dispatcher.multicasts) == 1

        # The next tick is unaffected
        again = scheduler.send_progress_reminders(18, now=EVENING)
        assert again.batchErrors == 0
        assert again.successCount == 600

    def test_day_boundary_follows_timezone(self, dispatcher, make_account, db):
        # 23:00 UTC on the 14th is midnight of the 15th in Berlin
        account = make_account(notifications={"pushTokens": ["tok-a"]})
        db.progress.insert_one({
            "accountId": str(account["_id"]),
            "date": datetime(2025, 1, 14, 23, 0, 0),
            "weight": 80.0,
        })
        scheduler = ReminderScheduler(dispatcher, timezone="Europe/Berlin")

        result = scheduler.send_progress_reminders(18, now=datetime(2025, 1, 15, 17, 0, 0))

        assert result.skippedAlreadyLogged == 1
        assert dispatcher.multicasts == []


class TestTrialExpiryReminders:
    NOW = datetime(2025, 1, 15, 10, 0, 0)

    def test_days_left_is_rounded_up(self, scheduler, dispatcher, make_account):
        make_account(
            subscription={"trialEndsAt": self.NOW + timedelta(hours=36)},
            notifications={"pushTokens": ["two-days"]},
        )
        make_account(
            subscription={"trialEndsAt": self.NOW + timedelta(hours=20)},
            notifications={"pushTokens": ["one-day"]},
        )

        result = scheduler.send_trial_expiry_reminders(now=self.NOW)

        assert result.notifiedAccounts == 2
        by_token = {push["tokens"][0]: push for push in dispatcher.multicasts}
        assert by_token["two-days"]["data"]["daysLeft"] == 2
        assert by_token["two-days"]["title"] == "⏰ 2 days left in trial!"
        assert by_token["one-day"]["data"]["daysLeft"] == 1
        assert by_token["one-day"]["title"] == "⏰ Trial expires tomorrow!"

    def test_outside_window_or_not_trialing_is_skipped(self, scheduler, dispatcher, make_account):
        make_account(
            subscription={"trialEndsAt": self.NOW + timedelta(days=3)},
            notifications={"pushTokens": ["later"]},
        )
        make_account(
            subscription={"trialEndsAt": self.NOW - timedelta(hours=1)},
            notifications={"pushTokens": ["already-over"]},
        )
        make_account(
            subscription={"status": "active", "trialEndsAt": self.NOW + timedelta(hours=20)},
            notifications={"pushTokens": ["paid"]},
        )

        result = scheduler.send_trial_expiry_reminders(now=self.NOW)

        assert result.candidates == 0
        assert dispatcher.multicasts == []

    def test_push_failure_is_counted(self, make_account, failing_dispatcher):
        dispatcher = failing_dispatcher
        make_account(
            subscription={"trialEndsAt": self.NOW + timedelta(hours=20)},
            notifications={"pushTokens": ["one-day"]},
        )

        result = ReminderScheduler(dispatcher, timezone="UTC").send_trial_expiry_reminders(now=self.NOW)

        assert result.batchErrors == 1
        assert result.notifiedAccounts == 0


class TestLifecycle:
    def test_start_registers_jobs_once(self, scheduler):
        try:
            scheduler.start()
            scheduler.start()
            assert scheduler.running
            expected = {f"progress-reminder-{hour:02d}" for hour in REMINDER_HOURS} | {"trial-expiry-check"}
            assert set(scheduler.job_ids()) == expected
            assert len(scheduler.job_ids()) == 5
        finally:
            scheduler.stop()
        assert not scheduler.running

    def test_stop_without_start_is_noop(self, scheduler):
        scheduler.stop()
        assert not scheduler.running
