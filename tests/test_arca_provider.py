from decimal import Decimal

import pytest
import requests

from services.payments import arca
from services.payments.arca import ArcaProvider, ArcaSettings
from services.payments.base import CheckoutOptions, OrderRef
from services.payments.errors import (
    PaymentError, ProviderConfigError, ProviderUnavailableError, UnsupportedOperationError,
)
from tests.utils import ARCA_SECRET, arca_callback


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture
def calls(monkeypatch):
    """Replace requests.post; set calls.reply to what the gateway answers."""
    class Calls(list):
        reply = FakeResponse({"errorCode": "0", "orderId": "md-42",
                              "formUrl": "https://arca.test/payment/merchants/pay.html?mdOrder=md-42"})

    captured = Calls()

    def fake_post(url, data=None, timeout=None):
        captured.append({"url": url, "data": data, "timeout": timeout})
        if isinstance(captured.reply, Exception):
            raise captured.reply
        return captured.reply

    monkeypatch.setattr(arca.requests, "post", fake_post)
    return captured


@pytest.fixture
def provider():
    return ArcaProvider(ArcaSettings("shop_api", "shop_pw", ARCA_SECRET,
                                     "https://arca.test/payment/rest", timeout=4.0))


def _order(total="50.00", currency="AMD"):
    return OrderRef("ORD-1001", Decimal(total), currency)


def _options():
    return CheckoutOptions("https://shop.example.am/ok", "https://shop.example.am/fail")


def test_register_posts_minor_units_and_returns_form_url(provider, calls):
    intent = provider.create_payment(_order(), _options())

    assert len(calls) == 1
    call = calls[0]
    assert call["url"] == "https://arca.test/payment/rest/register.do"
    assert call["timeout"] == 4.0
    assert call["data"]["amount"] == "5000"
    assert call["data"]["currency"] == "051"
    assert call["data"]["orderNumber"] == "ORD-1001"
    assert call["data"]["userName"] == "shop_api"

    assert intent.provider_payment_id == "md-42"
    assert intent.redirect_url.endswith("mdOrder=md-42")
    assert intent.amount_minor == 5000


def test_gateway_error_code_is_unavailable(provider, calls):
    calls.reply = FakeResponse({"errorCode": "1", "errorMessage": "Order already processed"})
    with pytest.raises(ProviderUnavailableError):
        provider.create_payment(_order(), _options())


@pytest.mark.parametrize("exc", [
    requests.Timeout("read timed out"),
    requests.ConnectionError("connection refused"),
])
def test_transport_failures_are_retryable(provider, calls, exc):
    calls.reply = exc
    with pytest.raises(ProviderUnavailableError) as ei:
        provider.create_payment(_order(), _options())
    assert ei.value.retryable is True
    assert "shop_pw" not in str(ei.value)


def test_non_json_or_http_error_is_unavailable(provider, calls):
    calls.reply = FakeResponse(ValueError("no json"))
    with pytest.raises(ProviderUnavailableError):
        provider.create_payment(_order(), _options())

    calls.reply = FakeResponse({}, status=502)
    with pytest.raises(ProviderUnavailableError):
        provider.create_payment(_order(), _options())


def test_unsupported_currency(provider, calls):
    with pytest.raises(UnsupportedOperationError):
        provider.create_payment(_order(currency="GBP"), _options())
    assert calls == []


def test_missing_credentials_fail_before_any_http(calls):
    p = ArcaProvider(ArcaSettings("shop_api", None, None))
    with pytest.raises(ProviderConfigError) as ei:
        p.create_payment(_order(), _options())
    assert ei.value.missing == ("ARCA_PASSWORD", "ARCA_CALLBACK_SECRET")
    assert calls == []


def test_test_mode_switches_default_host(monkeypatch):
    monkeypatch.delenv("ARCA_API_URL")
    monkeypatch.setenv("ARCA_TEST_MODE", "1")
    monkeypatch.setenv("PAYMENT_HTTP_TIMEOUT_SEC", "3")
    s = ArcaSettings.from_config()
    assert s.api_url == arca.TEST_API_URL
    assert s.timeout == 3.0

    monkeypatch.setenv("ARCA_TEST_MODE", "0")
    assert ArcaSettings.from_config().api_url == arca.DEFAULT_API_URL


def test_callback_checksum_round_trip(provider):
    fields = arca_callback()
    assert provider.verify_webhook(fields)
    fields["checksum"] = fields["checksum"].lower()
    assert provider.verify_webhook(fields)


def test_callback_fields_sorted_with_trailing_separator():
    fields = {"status": "1", "mdOrder": "x", "checksum": "c", "sign_alias": "a"}
    assert arca.callback_fields(fields) == ["mdOrder", "x", "status", "1", ""]


def test_sign_alias_is_not_signed(provider):
    fields = arca_callback()
    fields["sign_alias"] = "SHA-256"
    assert provider.verify_webhook(fields)


@pytest.mark.parametrize("field,value", [
    ("amount", "1"), ("orderNumber", "ORD-9"), ("mdOrder", "other"), ("status", "0"),
])
def test_tampered_callback_is_rejected(provider, field, value):
    fields = arca_callback()
    fields[field] = value
    assert provider.verify_webhook(fields) is False


def test_missing_checksum_is_rejected(provider):
    fields = arca_callback()
    del fields["checksum"]
    assert provider.verify_webhook(fields) is False


@pytest.mark.parametrize("operation,flag,expected", [
    ("deposited", "1", "paid"),
    ("deposited", "0", "failed"),
    ("approved", "0", "failed"),
    ("approved", "1", "pending"),
    ("declinedByTimeout", "0", "cancelled"),
    ("reversed", "1", "cancelled"),
    ("refunded", "1", "pending"),
])
def test_status_mapping(provider, operation, flag, expected):
    evt = provider.process_webhook(arca_callback(operation=operation, status=flag))
    assert evt.provider_status == expected
    assert evt.order_number == "ORD-1001"
    assert evt.provider_transaction_id == "0c8e5b1f-arca"


def test_refund_posts_order_and_amount(provider, calls):
    calls.reply = FakeResponse({"errorCode": "0"})
    out = provider.process_refund("md-42", 2500)
    assert calls[0]["url"].endswith("/refund.do")
    assert calls[0]["data"]["orderId"] == "md-42"
    assert calls[0]["data"]["amount"] == "2500"
    assert out.amount_minor == 2500
    assert out.provider == "arca"


def test_refund_declined(provider, calls):
    calls.reply = FakeResponse({"errorCode": "7", "errorMessage": "Amount exceeds"})
    with pytest.raises(PaymentError) as ei:
        provider.process_refund("md-42", 2500)
    assert ei.value.code == "refund_declined"
    assert not isinstance(ei.value, ProviderUnavailableError)
