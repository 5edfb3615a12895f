# services/payments/arca.py
"""
ArCa vPOS adapter (server-to-server registration + hosted card page).

Payment creation
  POST {ARCA_API_URL}/register.do with userName, password, amount (minor
  units), currency (ISO 4217 numeric), orderNumber, returnUrl, failUrl,
  description, language. The gateway answers {orderId, formUrl}; formUrl
  is the redirect. Nothing is signed locally at creation: the request is
  authenticated by the API credentials and the URL is issued by ArCa.

Callback
  ArCa calls /payments/webhook/arca with mdOrder, orderNumber, operation,
  status (and optionally amount) plus ``checksum``. The checksum is
  HMAC-SHA256(ARCA_CALLBACK_SECRET) over every other parameter except
  ``sign_alias``, sorted by name, written as ``name;value;`` pairs. The
  gateway sends it upper-case; comparison is case-insensitive.

  Status mapping uses (operation, status); see STATUS_MAP.

Refunds
  POST {ARCA_API_URL}/refund.do with userName, password, orderId, amount.

Every HTTP call is bounded by PAYMENT_HTTP_TIMEOUT_SEC; a timeout or
transport failure raises ProviderUnavailableError (retryable).
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import requests

from services.payments import signature
from services.payments.base import (
    CheckoutOptions, NormalizedWebhook, OrderRef, PaymentIntent,
    RefundOutcome, WebhookReply, mask,
)
from services.payments.errors import (
    PaymentError, ProviderConfigError, ProviderUnavailableError, UnsupportedOperationError,
)
from services.payments.settings import cfg, cfg_bool
from services.payments.state import PaymentStatus

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://ipay.arca.am/payment/rest"
TEST_API_URL = "https://ipaytest.arca.am:8445/payment/rest"

SIGNATURE_FIELD = "checksum"
UNSIGNED_FIELDS = {SIGNATURE_FIELD, "sign_alias"}

CURRENCY_CODES = {"AMD": "051", "USD": "840", "EUR": "978", "RUB": "643"}

# (operation, status) -> our status; everything else stays pending.
# 'refunded' callbacks are deliberately absent: refunds only happen through process_refund.
STATUS_MAP = {
    ("deposited", "1"): PaymentStatus.PAID,
    ("deposited", "0"): PaymentStatus.FAILED,
    ("approved", "0"): PaymentStatus.FAILED,
    ("declinedbytimeout", "0"): PaymentStatus.CANCELLED,
    ("declinedbytimeout", "1"): PaymentStatus.CANCELLED,
    ("reversed", "1"): PaymentStatus.CANCELLED,
}


@dataclass(frozen=True)
class ArcaSettings:
    username: Optional[str]
    password: Optional[str]
    callback_secret: Optional[str]
    api_url: str = DEFAULT_API_URL
    test_mode: bool = False
    timeout: float = 10.0

    @classmethod
    def from_config(cls) -> "ArcaSettings":
        test_mode = cfg_bool("ARCA_TEST_MODE")
        try:
            timeout = float(cfg("PAYMENT_HTTP_TIMEOUT_SEC") or 10)
        except ValueError:
            timeout = 10.0
        return cls(
            username=(cfg("ARCA_USERNAME") or "").strip() or None,
            password=(cfg("ARCA_PASSWORD") or "").strip() or None,
            callback_secret=(cfg("ARCA_CALLBACK_SECRET") or "").strip() or None,
            api_url=(cfg("ARCA_API_URL") or (TEST_API_URL if test_mode else DEFAULT_API_URL)).rstrip("/"),
            test_mode=test_mode,
            timeout=timeout,
        )

    def missing(self) -> list[str]:
        out = []
        if not self.username:
            out.append("ARCA_USERNAME")
        if not self.password:
            out.append("ARCA_PASSWORD")
        if not self.callback_secret:
            out.append("ARCA_CALLBACK_SECRET")
        return out


def callback_fields(fields: Mapping[str, Any]) -> list[str]:
    """Sorted ``name, value`` sequence plus a trailing empty item -> 'a;1;b;2;'."""
    out: list[str] = []
    for k in sorted(k for k in fields if k not in UNSIGNED_FIELDS):
        out.extend([k, "" if fields[k] is None else str(fields[k])])
    out.append("")
    return out


class ArcaProvider:
    name = "arca"

    def __init__(self, settings: ArcaSettings | None = None):
        self.settings = settings or ArcaSettings.from_config()

    def __repr__(self) -> str:
        return f"<ArcaProvider user={mask(self.settings.username)} test_mode={self.settings.test_mode}>"

    def is_configured(self) -> bool:
        return not self.settings.missing()

    def _post(self, method: str, data: dict) -> dict:
        url = f"{self.settings.api_url}/{method}"
        payload = {"userName": self.settings.username, "password": self.settings.password, **data}
        try:
            resp = requests.post(url, data=payload, timeout=self.settings.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.Timeout as e:
            raise ProviderUnavailableError(self.name, f"{method} timed out") from e
        except requests.RequestException as e:
            raise ProviderUnavailableError(self.name, f"{method} failed: {e.__class__.__name__}") from e
        except ValueError as e:
            raise ProviderUnavailableError(self.name, f"{method} returned non-JSON") from e
        if not isinstance(body, dict):
            raise ProviderUnavailableError(self.name, f"{method} returned unexpected payload")
        return body

    def create_payment(self, order: OrderRef, options: CheckoutOptions) -> PaymentIntent:
        missing = self.settings.missing()
        if missing:
            raise ProviderConfigError(self.name, missing)

        currency = CURRENCY_CODES.get(order.currency.upper())
        if not currency:
            raise UnsupportedOperationError(self.name, f"currency {order.currency}")
        amount = order.amount_minor
        if amount <= 0:
            raise ValueError("Order total must be positive")

        body = self._post("register.do", {
            "amount": str(amount),
            "currency": currency,
            "orderNumber": order.number,
            "returnUrl": options.success_url,
            "failUrl": options.fail_url,
            "description": options.description or f"Order {order.number}",
            "language": (options.language or "EN").lower(),
        })
        code = str(body.get("errorCode", "0") or "0")
        if code != "0" or not body.get("orderId") or not body.get("formUrl"):
            log.error("arca register.do rejected order=%s errorCode=%s", order.number, code)
            raise ProviderUnavailableError(self.name, f"register.do errorCode={code}")

        log.info("arca payment registered order=%s md_order=%s amount=%s test_mode=%s",
                 order.number, body["orderId"], amount, self.settings.test_mode)
        return PaymentIntent(
            provider=self.name,
            provider_payment_id=str(body["orderId"]),
            redirect_url=str(body["formUrl"]),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=options.ttl_sec),
            amount_minor=amount,
            currency=order.currency,
            sandbox=self.settings.test_mode,
            params={"orderNumber": order.number, "amount": str(amount), "currency": currency},
        )

    def verify_webhook(self, fields: Mapping[str, Any]) -> bool:
        claimed = fields.get(SIGNATURE_FIELD)
        if not claimed or not self.settings.callback_secret:
            return False
        return signature.verify(self.settings.callback_secret, callback_fields(fields),
                                claimed, delimiter=";")

    def process_webhook(self, fields: Mapping[str, Any]) -> NormalizedWebhook:
        operation = str(fields.get("operation") or "").strip().lower()
        flag = str(fields.get("status") or "").strip()
        status = STATUS_MAP.get((operation, flag), PaymentStatus.PENDING)
        return NormalizedWebhook(
            order_number=str(fields.get("orderNumber") or ""),
            provider_status=status.value,
            provider_transaction_id=fields.get("mdOrder"),
            raw_amount=fields.get("amount"),
            raw_status=f"{operation}:{flag}",
            metadata={k: v for k, v in fields.items() if k not in UNSIGNED_FIELDS},
        )

    def process_refund(self, payment_id: str, amount_minor: Optional[int]) -> RefundOutcome:
        missing = self.settings.missing()
        if missing:
            raise ProviderConfigError(self.name, missing)
        if not amount_minor or amount_minor <= 0:
            raise ValueError("Refund amount must be positive")

        body = self._post("refund.do", {"orderId": payment_id, "amount": str(amount_minor)})
        code = str(body.get("errorCode", "0") or "0")
        if code != "0":
            log.error("arca refund.do declined md_order=%s errorCode=%s", payment_id, code)
            raise PaymentError(f"arca refund declined (errorCode={code})", code="refund_declined")
        return RefundOutcome(provider=self.name, payment_id=payment_id,
                             amount_minor=amount_minor, provider_reference=payment_id, raw=body)

    def ack_response(self) -> WebhookReply:
        return WebhookReply("OK", 200)

    def reject_response(self) -> WebhookReply:
        return WebhookReply("FAIL", 400)
