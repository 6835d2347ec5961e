"""
Promo code ledger and redemption tests
"""
from datetime import datetime

import pytest

from app.core.config import settings
from app.core.exceptions import InvalidRedemption, NotFoundError, ValidationError
from app.models.promo_code import (
    PromoCodeCreateRequest,
    PromoCodeUpdateRequest,
    BulkGenerateRequest,
)
from app.services import promo_code_service

NOW = datetime(2025, 1, 5, 12, 0, 0)


@pytest.fixture
def make_promo(db):
    def _make(code="SPRING25", type="free_month", value=None, **fields):
        doc = {
            "code": code,
            "type": type,
            "value": value,
            "description": None,
            "isActive": True,
            "usageLimit": None,
            "usedCount": 0,
            "usedBy": [],
            "validFrom": datetime(2024, 12, 1),
            "validUntil": None,
            "createdBy": None,
            "createdAt": datetime(2024, 12, 1),
            "updatedAt": datetime(2024, 12, 1),
        }
        doc.update(fields)
        doc["_id"] = db.promo_codes.insert_one(doc).inserted_id
        return doc

    return _make


class TestValidation:
    def test_unknown_code(self, db):
        result = promo_code_service.validate_promo_code("NOPE123", now=NOW)
        assert not result.valid
        assert result.reason == "Promo code not found"

    def test_checks_run_in_order(self, make_promo):
        # Inactive wins over every later check
        make_promo(
            code="STACKED",
            isActive=False,
            validFrom=datetime(2025, 2, 1),
            usageLimit=1,
            usedCount=1,
        )
        result = promo_code_service.validate_promo_code("stacked", now=NOW)
        assert result.reason == "Promo code is not active"

    @pytest.mark.parametrize(
        "fields, reason",
        [
            ({"validFrom": datetime(2025, 2, 1)}, "Promo code is not yet valid"),
            ({"validUntil": datetime(2025, 1, 1)}, "Promo code has expired"),
            ({"usageLimit": 2, "usedCount": 2}, "Promo code usage limit reached"),
            ({"usedBy": ["acct-1"]}, "You have already used this promo code"),
        ],
    )
    def test_failure_reasons(self, make_promo, fields, reason):
        make_promo(code="WINTER", **fields)
        result = promo_code_service.validate_promo_code("WINTER", account_id="acct-1", now=NOW)
        assert not result.valid
        assert result.reason == reason

    def test_valid_code_reports_discount(self, make_promo):
        make_promo(code="TENOFF", type="discount_amount", value=1000)
        result = promo_code_service.validate_promo_code("TENOFF", now=NOW)
        assert result.valid
        assert result.discount.type == "amount"
        assert result.discount.description == "$10.00 discount"

    def test_discount_info_mapping(self):
        info = promo_code_service.get_discount_info
        assert info({"type": "free_month"}).model_dump() == {"type": "free_period", "value": 1, "description": "One month free"}
        assert info({"type": "free_year"}).value == 12
        assert info({"type": "lifetime"}).description == "Lifetime access"
        assert info({"type": "discount_percent", "value": 15}).description == "15% discount"


class TestRedemption:
    def test_free_month_extends_from_current_period_end(self, make_account, make_promo, db):
        account = make_account(subscription={"status": "active", "currentPeriodEnd": datetime(2025, 1, 10)})
        make_promo(code="FREEMONTH")

        result = promo_code_service.redeem_promo_code("FREEMONTH", str(account["_id"]), now=NOW)

        stored = db.accounts.find_one({"_id": account["_id"]})
        assert stored["subscription"]["currentPeriodEnd"] == datetime(2025, 2, 10)
        assert result.subscription["currentPeriodEnd"] == datetime(2025, 2, 10)
        assert result.discount.type == "free_period"

    def test_free_month_clamps_to_month_end(self, make_account, make_promo, db):
        account = make_account(subscription={"currentPeriodEnd": datetime(2025, 1, 31)})
        make_promo(code="FREEMONTH")

        promo_code_service.redeem_promo_code("FREEMONTH", str(account["_id"]), now=NOW)

        stored = db.accounts.find_one({"_id": account["_id"]})
        assert stored["subscription"]["currentPeriodEnd"] == datetime(2025, 2, 28)

    def test_free_year_without_period_end_starts_now(self, make_account, make_promo, db):
        account = make_account()
        make_promo(code="FREEYEAR", type="free_year")

        promo_code_service.redeem_promo_code("FREEYEAR", str(account["_id"]), now=NOW)

        stored = db.accounts.find_one({"_id": account["_id"]})
        assert stored["subscription"]["currentPeriodEnd"] == datetime(2026, 1, 5, 12, 0, 0)

    def test_lifetime_activates(self, make_account, make_promo, db):
        account = make_account()
        make_promo(code="FOREVER", type="lifetime")

        promo_code_service.redeem_promo_code("FOREVER", str(account["_id"]), now=NOW)

        subscription = db.accounts.find_one({"_id": account["_id"]})["subscription"]
        assert subscription["status"] == "active"
        assert subscription["currentPeriodEnd"] == datetime(2099, 12, 31)

    def test_discount_leaves_subscription_untouched(self, make_account, make_promo, db):
        account = make_account()
        make_promo(code="HALFOFF", type="discount_percent", value=50)

        promo_code_service.redeem_promo_code("HALFOFF", str(account["_id"]), now=NOW)

        subscription = db.accounts.find_one({"_id": account["_id"]})["subscription"]
        assert subscription == account["subscription"]
        assert db.promo_codes.find_one({"code": "HALFOFF"})["usedCount"] == 1

    def test_same_account_cannot_redeem_twice(self, make_account, make_promo, db):
        account = make_account()
        make_promo(code="TWICE", usageLimit=10)
        account_id = str(account["_id"])

        promo_code_service.redeem_promo_code("TWICE", account_id, now=NOW)
        with pytest.raises(InvalidRedemption) as exc_info:
            promo_code_service.redeem_promo_code("TWICE", account_id, now=NOW)

        assert exc_info.value.reason == "You have already used this promo code"
        promo = db.promo_codes.find_one({"code": "TWICE"})
        assert promo["usedCount"] == 1
        assert promo["usedBy"] == [account_id]

    def test_failed_entitlement_releases_the_claim(self, make_account, make_promo, db, monkeypatch):
        account_id = str(make_account()["_id"])
        make_promo(code="VANISHED", usageLimit=1)
        lookup = promo_code_service.account_service.get_account_by_id
        calls = {"n": 0}

        def removed_after_claim(requested_id):
            calls["n"] += 1
            if calls["n"] > 1:
                raise NotFoundError("Account not found")
            return lookup(requested_id)

        monkeypatch.setattr(promo_code_service.account_service, "get_account_by_id", removed_after_claim)

        with pytest.raises(NotFoundError):
            promo_code_service.redeem_promo_code("VANISHED", account_id, now=NOW)

        promo = db.promo_codes.find_one({"code": "VANISHED"})
        assert promo["usedCount"] == 0
        assert promo["usedBy"] == []
        assert db.logs.find_one({"action": "promo_code_used", "status": "failure"}) is not None

    def test_stale_snapshot_cannot_exceed_usage_limit(self, make_account, make_promo, db, monkeypatch):
        first = str(make_account()["_id"])
        second = str(make_account()["_id"])
        make_promo(code="LASTONE", usageLimit=1)

        original = promo_code_service.validate_promo_document
        state = {"interleaved": False}

        def validate_then_race(promo_doc, account_id=None, now=None):
            result = original(promo_doc, account_id, now)
            if account_id == second and not state["interleaved"]:
                # `first` takes the last slot between `second`'s read and write
                state["interleaved"] = True
                promo_code_service.redeem_promo_code("LASTONE", first, now=NOW)
            return result

        monkeypatch.setattr(promo_code_service, "validate_promo_document", validate_then_race)

        with pytest.raises(InvalidRedemption) as exc_info:
            promo_code_service.redeem_promo_code("LASTONE", second, now=NOW)

        assert exc_info.value.reason == "Promo code usage limit reached"
        promo = db.promo_codes.find_one({"code": "LASTONE"})
        assert promo["usedCount"] == 1
        assert promo["usedBy"] == [first]

    def test_usage_limit_holds_across_many_accounts(self, make_account, make_promo, db):
        make_promo(code="FIRSTTHREE", usageLimit=3)
        outcomes = []
        for _ in range(5):
            account_id = str(make_account()["_id"])
            try:
                promo_code_service.redeem_promo_code("FIRSTTHREE", account_id, now=NOW)
                outcomes.append("ok")
            except InvalidRedemption as e:
                outcomes.append(e.reason)

        assert outcomes.count("ok") == 3
        promo = db.promo_codes.find_one({"code": "FIRSTTHREE"})
        assert promo["usedCount"] == 3
        assert len(set(promo["usedBy"])) == 3

    def test_expired_code_is_rejected(self, make_account, make_promo):
        account = make_account()
        make_promo(code="OLDCODE", validUntil=datetime(2025, 1, 1))
        with pytest.raises(InvalidRedemption, match="expired"):
            promo_code_service.redeem_promo_code("OLDCODE", str(account["_id"]), now=NOW)


class TestAdministration:
    def test_create_and_reject_duplicate(self, db):
        request = PromoCodeCreateRequest(code="launch50", type="discount_percent", value=50)
        created = promo_code_service.create_promo_code(request, created_by="admin-1")
        assert created.code == "LAUNCH50"
        assert created.usedCount == 0

        with pytest.raises(ValidationError) as exc_info:
            promo_code_service.create_promo_code(request, created_by="admin-1")
        assert exc_info.value.status_code == 409

    def test_create_request_enforces_value_rules(self):
        with pytest.raises(ValueError):
            PromoCodeCreateRequest(code="BADPCT", type="discount_percent", value=120)
        with pytest.raises(ValueError):
            PromoCodeCreateRequest(code="BADFREE", type="free_month", value=5)

    def test_update_cannot_drop_limit_below_redemptions(self, make_promo):
        promo = make_promo(code="LIMITED", usageLimit=5, usedCount=3, usedBy=["a", "b", "c"])
        with pytest.raises(ValidationError):
            promo_code_service.update_promo_code(str(promo["_id"]), PromoCodeUpdateRequest(usageLimit=2))

        updated = promo_code_service.update_promo_code(str(promo["_id"]), PromoCodeUpdateRequest(usageLimit=4))
        assert updated.usageLimit == 4

    def test_list_filters_and_pages(self, make_promo):
        for index in range(3):
            make_promo(code=f"ACTIVE{index}", createdAt=datetime(2025, 1, index + 1))
        make_promo(code="RETIRED", isActive=False)

        page = promo_code_service.list_promo_codes(page=1, limit=2, is_active=True)
        assert page.total == 3
        assert page.totalPages == 2
        assert [p.code for p in page.promoCodes] == ["ACTIVE2", "ACTIVE1"]


class TestBulkGeneration:
    def test_collisions_are_retried(self, make_promo, db, monkeypatch):
        make_promo(code="VIPAAAAAA")
        suffixes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
        monkeypatch.setattr(promo_code_service, "_random_suffix", lambda: next(suffixes))

        result = promo_code_service.generate_promo_codes(
            BulkGenerateRequest(count=1, type="free_month", prefix="vip"), created_by="admin-1"
        )

        assert result.generated == 1
        assert result.promoCodes[0].code == "VIPBBBBBB"
        assert result.promoCodes[0].description == "Bulk generated free_month code"
        assert result.promoCodes[0].usageLimit == 1

    def test_exhausted_retries_fail_only_that_code(self, make_promo, monkeypatch):
        make_promo(code="AAAAAA")
        monkeypatch.setattr(settings, "PROMO_CODE_MAX_GENERATION_ATTEMPTS", 3)
        monkeypatch.setattr(promo_code_service, "_random_suffix", lambda: "AAAAAA")

        result = promo_code_service.generate_promo_codes(BulkGenerateRequest(count=2, type="lifetime"))

        assert result.generated == 0
        assert result.failed == 2
        assert result.requested == 2

    def test_generated_codes_are_unique(self, db):
        result = promo_code_service.generate_promo_codes(BulkGenerateRequest(count=25, type="free_month", prefix="GYM"))
        codes = [promo.code for promo in result.promoCodes]
        assert len(set(codes)) == 25
        assert all(code.startswith("GYM") and len(code) == 9 for code in codes)
