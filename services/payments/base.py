# services/payments/base.py
"""
Provider contract + the small value types that cross it.
Adapters implement PaymentProvider; the registry maps provider ids to them.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, Mapping, Protocol


def to_minor(amount: Decimal | int | float | str) -> int:
    """Decimal major units -> integer minor units (half-up)."""
    d = Decimal(str(amount))
    return int((d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) * 100))


def from_minor(minor: int) -> Decimal:
    return (Decimal(minor) / Decimal(100)).quantize(Decimal("0.01"))


def mask(value: str | None) -> str:
    if not value:
        return "NOT SET"
    return "***" + value[-4:]


@dataclass(frozen=True)
class OrderRef:
    number: str                   # provider-facing correlation key
    total: Decimal                # major units
    currency: str

    @property
    def amount_minor(self) -> int:
        return to_minor(self.total)


@dataclass
class CheckoutOptions:
    success_url: str
    fail_url: str
    language: str = "EN"
    description: Optional[str] = None
    ttl_sec: int = 1800


@dataclass
class PaymentIntent:
    provider: str
    provider_payment_id: str
    # None when the flow completes without sending the client anywhere
    redirect_url: Optional[str]
    expires_at: datetime
    amount_minor: int
    currency: str
    sandbox: bool = False
    params: Dict[str, str] = field(default_factory=dict)


@dataclass
class NormalizedWebhook:
    order_number: str
    provider_status: str          # pending | paid | failed | cancelled
    provider_transaction_id: Optional[str]
    raw_amount: Optional[str]
    raw_status: Optional[str]
    metadata: Dict[str, Any]


@dataclass
class RefundOutcome:
    provider: str
    payment_id: str
    amount_minor: Optional[int]
    provider_reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookReply:
    body: str
    status: int = 200
    content_type: str = "text/plain"


class PaymentProvider(Protocol):
    name: str

    def is_configured(self) -> bool:
        """True when every credential the adapter needs is present."""

    def create_payment(self, order: OrderRef, options: CheckoutOptions) -> PaymentIntent:
        """
        Build the provider handle for ``order``.
        Raise ProviderConfigError before any signing/network work when
        credentials are missing. Must not touch the order itself.
        """

    def verify_webhook(self, fields: Mapping[str, Any]) -> bool:
        """Recompute the callback signature. Never raises; False on any doubt."""

    def process_webhook(self, fields: Mapping[str, Any]) -> NormalizedWebhook:
        """Normalize an already-verified callback. No crypto here."""

    def process_refund(self, payment_id: str, amount_minor: Optional[int]) -> RefundOutcome:
        """Refund or raise UnsupportedOperationError / ProviderUnavailableError."""

    def ack_response(self) -> WebhookReply:
        """What the provider expects back for any verified callback."""

    def reject_response(self) -> WebhookReply:
        """Generic rejection for unverified callbacks (never says why)."""
