# services/payments/idram.py
"""
Idram wallet/card adapter (redirect flow).

Payment creation
  The client is redirected to ``{IDRAM_API_URL}/payment/redirect`` with
  EDP_LANGUAGE, EDP_REC_ACCOUNT, EDP_REC_AMOUNT, EDP_DESCRIPTION,
  EDP_BILL_NO, EDP_SUCCESS_URL, EDP_FAIL_URL and EDP_CHECKSUM, where
  EDP_CHECKSUM = HMAC-SHA256(secret, join(":", CREATE_FIELDS)).
  EDP_REC_AMOUNT is the integer amount in minor units.

Callback
  Idram posts EDP_* form fields to /payments/webhook/idram. The checksum
  is recomputed over CALLBACK_FIELDS (a different list than at creation)
  joined by ":". Only the EDP_* names are accepted; generic aliases such
  as ``orderId``/``amount`` are not read.

  Idram expects the literal body ``OK`` for an accepted callback. Its
  protocol has no "retry later" answer, so a failed verification is
  final for that delivery and answered with a bare ``FAIL``.

Refunds are not available through the Idram API.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

from services.payments import signature
from services.payments.base import (
    CheckoutOptions, NormalizedWebhook, OrderRef, PaymentIntent,
    RefundOutcome, WebhookReply, mask,
)
from services.payments.errors import ProviderConfigError, UnsupportedOperationError
from services.payments.settings import cfg, cfg_bool
from services.payments.state import PaymentStatus

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://banking.idram.am/api/v1"

SIGNATURE_FIELD = "EDP_CHECKSUM"
CREATE_FIELDS = (
    "EDP_REC_ACCOUNT",
    "EDP_REC_AMOUNT",
    "EDP_BILL_NO",
    "EDP_DESCRIPTION",
    "EDP_SUCCESS_URL",
    "EDP_FAIL_URL",
)
CALLBACK_FIELDS = (
    "EDP_REC_ACCOUNT",
    "EDP_REC_AMOUNT",
    "EDP_BILL_NO",
    "EDP_TRANS_ID",
    "EDP_PAYER_ACCOUNT",
)

# EDP_TRANS_STATUS (compared upper-cased) -> our status; anything else stays pending
STATUS_MAP = {
    "OK": PaymentStatus.PAID,
    "SUCCESS": PaymentStatus.PAID,
    "COMPLETED": PaymentStatus.PAID,
    "FAILED": PaymentStatus.FAILED,
    "ERROR": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
}


@dataclass(frozen=True)
class IdramSettings:
    merchant_id: Optional[str]
    secret_key: Optional[str]
    api_url: str = DEFAULT_API_URL
    test_mode: bool = False

    @classmethod
    def from_config(cls) -> "IdramSettings":
        return cls(
            merchant_id=(cfg("IDRAM_MERCHANT_ID") or "").strip() or None,
            secret_key=(cfg("IDRAM_SECRET_KEY") or "").strip() or None,
            api_url=(cfg("IDRAM_API_URL") or DEFAULT_API_URL).rstrip("/"),
            test_mode=cfg_bool("IDRAM_TEST_MODE"),
        )

    def missing(self) -> list[str]:
        out = []
        if not self.merchant_id:
            out.append("IDRAM_MERCHANT_ID")
        if not self.secret_key:
            out.append("IDRAM_SECRET_KEY")
        return out


class IdramProvider:
    name = "idram"

    def __init__(self, settings: IdramSettings | None = None):
        self.settings = settings or IdramSettings.from_config()

    def __repr__(self) -> str:
        return (f"<IdramProvider merchant={mask(self.settings.merchant_id)} "
                f"test_mode={self.settings.test_mode}>")

    def is_configured(self) -> bool:
        return not self.settings.missing()

    def create_payment(self, order: OrderRef, options: CheckoutOptions) -> PaymentIntent:
        missing = self.settings.missing()
        if missing:
            raise ProviderConfigError(self.name, missing)

        amount = order.amount_minor
        if amount <= 0:
            raise ValueError("Order total must be positive")

        params = {
            "EDP_LANGUAGE": (options.language or "EN").upper(),
            "EDP_REC_ACCOUNT": self.settings.merchant_id,
            "EDP_REC_AMOUNT": str(amount),
            "EDP_DESCRIPTION": options.description or f"Order {order.number}",
            "EDP_BILL_NO": order.number,
            "EDP_SUCCESS_URL": options.success_url,
            "EDP_FAIL_URL": options.fail_url,
        }
        params[SIGNATURE_FIELD] = signature.sign(
            self.settings.secret_key, [params[f] for f in CREATE_FIELDS])

        url = f"{self.settings.api_url}/payment/redirect?{urlencode(params)}"
        log.info("idram payment created order=%s amount=%s merchant=%s test_mode=%s",
                 order.number, amount, mask(self.settings.merchant_id), self.settings.test_mode)

        return PaymentIntent(
            provider=self.name,
            provider_payment_id=order.number,
            redirect_url=url,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=options.ttl_sec),
            amount_minor=amount,
            currency=order.currency,
            sandbox=self.settings.test_mode,
            params=params,
        )

    def verify_webhook(self, fields: Mapping[str, Any]) -> bool:
        claimed = fields.get(SIGNATURE_FIELD)
        if not claimed:
            log.warning("idram callback without %s", SIGNATURE_FIELD)
            return False
        if not self.settings.secret_key:
            return False
        # callbacks for another merchant account are never ours
        if str(fields.get("EDP_REC_ACCOUNT", "")) != (self.settings.merchant_id or ""):
            return False
        return signature.verify(
            self.settings.secret_key,
            [fields.get(f, "") for f in CALLBACK_FIELDS],
            claimed,
        )

    def process_webhook(self, fields: Mapping[str, Any]) -> NormalizedWebhook:
        raw_status = fields.get("EDP_TRANS_STATUS")
        status = STATUS_MAP.get(str(raw_status or "").strip().upper(), PaymentStatus.PENDING)
        return NormalizedWebhook(
            order_number=str(fields.get("EDP_BILL_NO") or ""),
            provider_status=status.value,
            provider_transaction_id=fields.get("EDP_TRANS_ID"),
            raw_amount=fields.get("EDP_REC_AMOUNT"),
            raw_status=raw_status,
            metadata={k: v for k, v in fields.items() if k != SIGNATURE_FIELD},
        )

    def process_refund(self, payment_id: str, amount_minor: Optional[int]) -> RefundOutcome:
        raise UnsupportedOperationError(self.name, "refund")

    def ack_response(self) -> WebhookReply:
        return WebhookReply("OK", 200)

    def reject_response(self) -> WebhookReply:
        return WebhookReply("FAIL", 400)
