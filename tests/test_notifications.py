"""Tests for SMS notifications and settings loading."""
from decimal import Decimal

from twilio.base.exceptions import TwilioException

from config import Settings
from notifications import SmsNotifier


class _Messages:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def create(self, to, from_, body):
        if self.fail:
            raise TwilioException("carrier rejected")
        self.sent.append((to, from_, body))


class _Client:
    def __init__(self, fail=False):
        self.messages = _Messages(fail)


def test_order_completed_notifies_customer_and_admin(checkout, fill_cart, shipping):
    fill_cart("u1", ("RING001", 1))
    order = checkout.create_order("u1", shipping)
    client = _Client()

    SmsNotifier(None, None, "+15550001111", admin_phone="+919811111111", client=client).order_completed(order)

    recipients = [to for to, _, _ in client.messages.sent]
    assert recipients == ["+919800000000", "+919811111111"]
    assert order.id in client.messages.sent[0][2]


def test_sms_failure_is_swallowed():
    notifier = SmsNotifier(None, None, "+15550001111", client=_Client(fail=True))
    assert notifier.notify("+919800000000", "hello") is False


def test_unconfigured_notifier_is_a_no_op():
    notifier = SmsNotifier(None, None, None)
    assert notifier.notify("+919800000000", "hello") is False


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_live_key")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "shh")
    monkeypatch.setenv("SHIPPING_FEE", "75")
    monkeypatch.setenv("CORS_ORIGINS", "https://shop.example, https://admin.shop.example")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("TWILIO_ACCOUNT_SID", raising=False)

    settings = Settings.from_env()

    assert settings.gateway_configured is True
    assert settings.sms_configured is False
    assert settings.shipping_fee == Decimal("75")
    assert settings.cors_origins == ["https://shop.example", "https://admin.shop.example"]
    assert settings.database_name == "storefront"
