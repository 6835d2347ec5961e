"""
Account store tests: lifecycle, conditional subscription writes, Redis cache
"""
from datetime import datetime, timedelta

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.models.account import ProfileUpdateRequest
from app.services import account_service
from app.utils.account_helpers import (
    is_subscription_active,
    is_trial_expired,
    subscription_status_response,
)

IDENTITY = {"uid": "firebase-uid-1", "email": "lifter@example.com", "name": "Lifter", "email_verified": True}


class TestGetOrCreate:
    def test_first_login_creates_trial_account(self, db):
        account, created = account_service.get_or_create_account(IDENTITY)

        assert created
        assert account["email"] == "lifter@example.com"
        subscription = account["subscription"]
        assert subscription["status"] == "trial"
        remaining = subscription["trialEndsAt"] - account["dateCreated"]
        assert remaining == timedelta(days=3)
        assert account["notifications"]["reminderTimes"] == ["12:00", "18:00", "22:00", "23:00"]

    def test_second_login_returns_same_account(self, db):
        first, _ = account_service.get_or_create_account(IDENTITY)
        second, created = account_service.get_or_create_account(IDENTITY)

        assert not created
        assert second["_id"] == first["_id"]
        assert db.accounts.count_documents({"firebaseUid": "firebase-uid-1"}) == 1


class TestLookups:
    def test_unknown_and_malformed_ids(self, db):
        with pytest.raises(NotFoundError):
            account_service.get_account_by_id("5f0c6a3b2a1e4c0012345678")
        with pytest.raises(ValidationError):
            account_service.get_account_by_id("not-an-object-id")

    def test_customer_id_resolution(self, make_account):
        account = make_account(subscription={"stripeCustomerId": "cus_42"})
        assert account_service.get_account_by_customer_id("cus_42")["_id"] == account["_id"]
        assert account_service.get_account_by_customer_id("cus_missing") is None
        assert account_service.get_account_by_customer_id(None) is None


class TestSubscriptionWrites:
    def test_conditional_update_applies_when_expected_matches(self, make_account):
        end = datetime(2025, 1, 10)
        account = make_account(subscription={"currentPeriodEnd": end})

        updated = account_service.apply_subscription_update(
            str(account["_id"]),
            {"currentPeriodEnd": datetime(2025, 2, 10)},
            expected={"currentPeriodEnd": end},
        )

        assert updated["subscription"]["currentPeriodEnd"] == datetime(2025, 2, 10)

    def test_conditional_update_returns_none_on_mismatch(self, make_account, db):
        account = make_account(subscription={"currentPeriodEnd": datetime(2025, 1, 10)})

        updated = account_service.apply_subscription_update(
            str(account["_id"]),
            {"currentPeriodEnd": datetime(2025, 2, 10)},
            expected={"currentPeriodEnd": datetime(2024, 12, 1)},
        )

        assert updated is None
        stored = db.accounts.find_one({"_id": account["_id"]})
        assert stored["subscription"]["currentPeriodEnd"] == datetime(2025, 1, 10)

    def test_stripe_references_do_not_change_status(self, make_account):
        account = make_account()
        updated = account_service.set_stripe_references(str(account["_id"]), "cus_1", "sub_1")

        assert updated["subscription"]["stripeCustomerId"] == "cus_1"
        assert updated["subscription"]["stripeSubscriptionId"] == "sub_1"
        assert updated["subscription"]["status"] == "trial"


class TestPushTokensAndSettings:
    def test_tokens_are_deduplicated_and_replaced(self, make_account):
        account_id = str(make_account()["_id"])

        account_service.add_push_token(account_id, "device-old")
        account_service.add_push_token(account_id, "device-old")
        updated = account_service.replace_push_token(account_id, "device-new", old_token="device-old")

        assert updated["notifications"]["pushTokens"] == ["device-new"]

    def test_notification_settings(self, make_account):
        account_id = str(make_account()["_id"])
        updated = account_service.update_notification_settings(account_id, False, ["07:30"])
        assert updated["notifications"]["enabled"] is False
        assert updated["notifications"]["reminderTimes"] == ["07:30"]

    def test_profile_update_merges_nested_settings(self, make_account):
        account = make_account(profile={"height": 175.0, "gender": "female"})
        account_id = str(account["_id"])

        updated = account_service.update_profile(
            account_id,
            ProfileUpdateRequest(
                profile={"height": 176.5},
                settings={"notificationsEnabled": False, "units": {"height": "ft"}},
            ),
        )

        assert updated["profile"] == {"height": 176.5, "gender": "female"}
        assert updated["notifications"]["enabled"] is False
        assert updated["preferences"]["units"] == {"weight": "kg", "height": "ft"}
        with pytest.raises(ValidationError):
            account_service.update_profile(account_id, ProfileUpdateRequest())

    def test_deactivate(self, make_account):
        account_id = str(make_account()["_id"])
        assert account_service.deactivate_account(account_id)["isActive"] is False


class TestEntitlementChecks:
    NOW = datetime(2025, 1, 15, 12, 0, 0)

    @pytest.mark.parametrize(
        "subscription, active",
        [
            ({"status": "trial", "trialEndsAt": datetime(2025, 1, 16)}, True),
            ({"status": "trial", "trialEndsAt": datetime(2025, 1, 14)}, False),
            ({"status": "active"}, True),
            ({"status": "canceled"}, False),
            ({"status": "expired"}, False),
        ],
    )
    def test_is_subscription_active(self, subscription, active):
        assert is_subscription_active({"subscription": subscription}, now=self.NOW) is active

    def test_status_response_reports_trial_expiry(self):
        account = {"subscription": {"status": "trial", "trialEndsAt": datetime(2025, 1, 14)}}
        assert is_trial_expired(account, now=self.NOW)
        response = subscription_status_response(account, now=self.NOW)
        assert response.isTrialExpired
        assert not response.isActive


class TestAccountCache:
    def test_login_fills_cache_and_next_read_hits_it(self, db, fake_redis):
        account, _ = account_service.get_or_create_account(IDENTITY)
        assert "account:firebase-uid-1" in fake_redis.store

        db.accounts.update_one({"_id": account["_id"]}, {"$set": {"displayName": "Changed behind the cache"}})
        cached, created = account_service.get_or_create_account(IDENTITY)

        assert not created
        assert cached["displayName"] == "Lifter"
        assert cached["_id"] == account["_id"]
        assert isinstance(cached["subscription"]["trialEndsAt"], datetime)
        assert cached["subscription"]["trialEndsAt"].tzinfo is None

    def test_writes_invalidate_cache(self, db, fake_redis):
        account, _ = account_service.get_or_create_account(IDENTITY)

        account_service.apply_subscription_update(str(account["_id"]), {"status": "active"})

        assert "account:firebase-uid-1" not in fake_redis.store
        fresh, _ = account_service.get_or_create_account(IDENTITY)
        assert fresh["subscription"]["status"] == "active"

    def test_write_racing_a_cache_fill_leaves_no_stale_entry(self, db, fake_redis, monkeypatch):
        account, _ = account_service.get_or_create_account(IDENTITY)
        account_id = str(account["_id"])
        fake_redis.store.clear()
        fill = account_service.cache_account

        def deactivated_between_read_and_fill(doc, *args, **kwargs):
            # The account was read before this deactivation landed
            account_service.deactivate_account(account_id)
            return fill(doc, *args, **kwargs)

        monkeypatch.setattr(account_service, "cache_account", deactivated_between_read_and_fill)
        stale, _ = account_service.get_or_create_account(IDENTITY)
        monkeypatch.setattr(account_service, "cache_account", fill)

        assert stale["isActive"] is True
        assert "account:firebase-uid-1" not in fake_redis.store
        fresh, _ = account_service.get_or_create_account(IDENTITY)
        assert fresh["isActive"] is False

    def test_cache_outage_falls_through_to_mongodb(self, db, fake_redis):
        fake_redis.broken = True

        account, created = account_service.get_or_create_account(IDENTITY)
        again, created_again = account_service.get_or_create_account(IDENTITY)

        assert created and not created_again
        assert again["_id"] == account["_id"]
