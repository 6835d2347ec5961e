"""
Progress log and streak milestone tests
"""
from datetime import datetime, timedelta

import pytest

from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.models.progress import Measurements, ProgressCreateRequest, ProgressUpdateRequest
from app.services import notification_service, progress_service

NOW = datetime(2025, 3, 10, 20, 0, 0)


@pytest.fixture
def account_id(make_account):
    return str(make_account()["_id"])


def log_days(account_id, *days_ago):
    for offset in days_ago:
        progress_service.create_progress(
            account_id, ProgressCreateRequest(date=NOW - timedelta(days=offset), weight=80.0)
        )


class TestProgressLog:
    def test_date_is_truncated_and_one_entry_per_day(self, account_id):
        entry = progress_service.create_progress(
            account_id, ProgressCreateRequest(date=datetime(2025, 3, 10, 7, 45), weight=81.2, mood=4)
        )
        assert entry.date == datetime(2025, 3, 10)
        assert entry.mood == 4

        with pytest.raises(ValidationError) as exc_info:
            progress_service.create_progress(
                account_id, ProgressCreateRequest(date=datetime(2025, 3, 10, 21, 0), weight=81.0)
            )
        assert exc_info.value.status_code == 409

    def test_list_is_newest_first(self, account_id):
        log_days(account_id, 2, 0, 1)
        listed = progress_service.list_progress(account_id, page=1, limit=2)
        assert listed.total == 3
        assert [item.date.day for item in listed.progress] == [10, 9]

    def test_accounts_logged_on_day(self, account_id, make_account):
        other_id = str(make_account(firebaseUid="uid-other")["_id"])
        assert progress_service.accounts_logged_on_day([account_id, other_id], now=NOW) == set()
        log_days(account_id, 1)
        assert progress_service.accounts_logged_on_day([account_id, other_id], now=NOW) == set()
        log_days(account_id, 0)
        assert progress_service.accounts_logged_on_day([account_id, other_id], now=NOW) == {account_id}
        assert progress_service.accounts_logged_on_day([], now=NOW) == set()

    def test_day_follows_reminder_timezone(self, account_id, monkeypatch):
        monkeypatch.setattr(settings, "REMINDER_TIMEZONE", "Europe/Berlin")
        # 23:30 UTC on the 9th is already the 10th in Berlin (UTC+1)
        entry = progress_service.create_progress(
            account_id, ProgressCreateRequest(date=datetime(2025, 3, 9, 23, 30), weight=80.0)
        )
        assert entry.date == datetime(2025, 3, 9, 23, 0)


class TestProgressEdits:
    def create(self, account_id, day, **fields):
        return progress_service.create_progress(
            account_id, ProgressCreateRequest(date=datetime(2025, 3, day, 8, 0), **fields)
        )

    def test_get_is_scoped_to_the_account(self, account_id, make_account):
        entry = self.create(account_id, 10, weight=80.0)
        assert progress_service.get_progress(account_id, entry.id).weight == 80.0

        other_id = str(make_account()["_id"])
        with pytest.raises(NotFoundError):
            progress_service.get_progress(other_id, entry.id)
        with pytest.raises(ValidationError):
            progress_service.get_progress(account_id, "not-an-id")

    def test_update_changes_only_sent_fields(self, account_id):
        entry = self.create(account_id, 10, weight=80.0, mood=3, notes="felt fine")

        updated = progress_service.update_progress(
            account_id, entry.id, ProgressUpdateRequest(weight=79.4, measurements=Measurements(waist=84.0))
        )

        assert updated.weight == 79.4
        assert updated.measurements.waist == 84.0
        assert updated.mood == 3
        assert updated.notes == "felt fine"
        assert updated.date == entry.date
        assert updated.updatedAt is not None

    def test_empty_update_and_unknown_entry(self, account_id):
        entry = self.create(account_id, 10, weight=80.0)
        with pytest.raises(ValidationError):
            progress_service.update_progress(account_id, entry.id, ProgressUpdateRequest())
        with pytest.raises(NotFoundError):
            progress_service.update_progress(
                account_id, "5f0c6a3b2a1e4c0012345678", ProgressUpdateRequest(weight=79.0)
            )

    def test_delete(self, account_id, db):
        entry = self.create(account_id, 10, weight=80.0)

        deleted = progress_service.delete_progress(account_id, entry.id)

        assert str(deleted["_id"]) == entry.id
        assert db.progress.count_documents({}) == 0
        with pytest.raises(NotFoundError):
            progress_service.delete_progress(account_id, entry.id)

    def test_compare_reports_second_minus_first(self, account_id):
        self.create(account_id, 1, weight=82.5, measurements=Measurements(waist=90.0, chest=100.0))
        self.create(account_id, 15, weight=80.0, measurements=Measurements(waist=87.5))

        result = progress_service.compare_progress(
            account_id, datetime(2025, 3, 1, 21, 0), datetime(2025, 3, 15, 6, 0)
        )

        assert result.comparison.weightDifference == -2.5
        assert result.comparison.daysBetween == 14
        assert result.comparison.measurementChanges == {"waist": -2.5}
        assert result.progress1.weight == 82.5

    def test_compare_needs_both_days(self, account_id):
        self.create(account_id, 1, weight=82.5)
        with pytest.raises(NotFoundError):
            progress_service.compare_progress(account_id, datetime(2025, 3, 1), datetime(2025, 3, 2))


class TestStreaks:
    def test_streak_counts_consecutive_days_ending_today(self, account_id):
        log_days(account_id, 0, 1, 2, 4)
        assert progress_service.current_streak(account_id, now=NOW) == 3

    def test_no_entry_today_means_no_streak(self, account_id):
        log_days(account_id, 1, 2)
        assert progress_service.current_streak(account_id, now=NOW) == 0

    def test_milestone_sends_motivational_push(self, dispatcher):
        assert notification_service.send_motivational_message(dispatcher, "acc-1", ["tok"], 7)
        push = dispatcher.multicasts[0]
        assert push["title"] == "🌟 One Week Strong!"
        assert push["data"]["streak"] == 7

    def test_other_streaks_and_failures_send_nothing(self, dispatcher, failing_dispatcher):
        assert not notification_service.send_motivational_message(dispatcher, "acc-1", ["tok"], 5)
        assert not notification_service.send_motivational_message(dispatcher, "acc-1", [], 3)
        assert not notification_service.send_motivational_message(None, "acc-1", ["tok"], 3)
        assert dispatcher.multicasts == []
        assert not notification_service.send_motivational_message(failing_dispatcher, "acc-1", ["tok"], 3)
