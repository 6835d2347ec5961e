"""
Stripe client configuration and snapshot parsing
"""
import pytest
import requests
import stripe

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.services import subscription_service


@pytest.fixture
def stripe_configured(monkeypatch):
    # Restored after each test; configure_stripe() mutates module globals
    for name in ("api_key", "default_http_client", "max_network_retries"):
        monkeypatch.setattr(stripe, name, getattr(stripe, name, None), raising=False)
    monkeypatch.setattr(settings, "STRIPE_TEST_API_KEY", "sk_test_123")
    monkeypatch.setattr(settings, "PROVIDER_TIMEOUT_SECONDS", 2)
    assert subscription_service.configure_stripe()


def test_timed_out_call_is_attempted_once(stripe_configured, monkeypatch):
    attempts = []

    def timed_out(self, *args, **kwargs):
        attempts.append(kwargs.get("timeout"))
        raise requests.exceptions.Timeout("read timed out")

    monkeypatch.setattr(requests.Session, "request", timed_out)

    with pytest.raises(UpstreamUnavailable):
        subscription_service.fetch_subscription_snapshot("sub_123")
    assert len(attempts) == 1
    assert stripe.max_network_retries == 0


def test_period_bounds_fall_back_to_first_item():
    legacy = {"current_period_start": 1, "current_period_end": 2}
    itemized = {"items": {"data": [{"current_period_start": 3, "current_period_end": 4}]}}
    assert subscription_service.subscription_period_bounds(legacy) == (1, 2)
    assert subscription_service.subscription_period_bounds(itemized) == (3, 4)


def test_plan_from_price_interval():
    yearly = {"items": {"data": [{"price": {"recurring": {"interval": "year"}}}]}}
    assert subscription_service.subscription_plan(yearly) == "yearly"
    assert subscription_service.subscription_plan({}) is None
