# services/payments/checkout.py
"""
Checkout orchestration: cart -> pending order -> provider payment handle.

The order is created in 'pending' before the provider is asked for
anything. If the provider then fails (missing credentials, timeout) the
order stays pending and the attempt is marked 'error', so the client can
retry with the same or another provider via retry_payment().
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from models.cart_store import cart_total, load_cart
from models.orders_store import create_pending_order, get_order
from models.payments_store import attach_intent, create_payment_attempt, mark_attempt_error
from services.metrics import CHECKOUTS
from services.payments.base import CheckoutOptions, OrderRef, PaymentIntent, PaymentProvider
from services.payments.errors import (
    CheckoutError, PaymentError, ProviderConfigError, ProviderUnavailableError,
)
from services.payments.registry import get_provider, registry
from services.payments.settings import app_url, cfg, cfg_int
from services.payments.state import PaymentStatus

log = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: dict
    payment_id: int
    intent: PaymentIntent

    @property
    def next_action(self) -> str:
        return "redirect" if self.intent.redirect_url else "none"

    def to_json(self) -> dict:
        o = self.order
        return {
            "order": {
                "id": o["id"],
                "number": o["number"],
                "paymentStatus": o["payment_status"],
                "total": float(o["total"]),
                "currency": o["currency"],
            },
            "payment": {
                "provider": self.intent.provider,
                "providerPaymentId": self.intent.provider_payment_id,
                "redirectUrl": self.intent.redirect_url,
                "expiresAt": self.intent.expires_at.isoformat(timespec="seconds"),
            },
            "nextAction": self.next_action,
        }


def checkout_options(order_number: str, language: str = "EN") -> CheckoutOptions:
    base = app_url()
    return CheckoutOptions(
        success_url=f"{base}/orders/{order_number}?status=success",
        fail_url=f"{base}/orders/{order_number}?status=failed",
        language=language or "EN",
        ttl_sec=cfg_int("PAYMENT_INTENT_TTL_SEC", 1800),
    )


def _create_payment(order: dict, provider: PaymentProvider, language: str) -> CheckoutResult:
    pid = create_payment_attempt(order["id"], provider.name, order["amount_minor"], order["currency"])
    ref = OrderRef(number=order["number"], total=order["total"], currency=order["currency"])
    try:
        intent = provider.create_payment(ref, checkout_options(order["number"], language))
    except ProviderConfigError as e:
        mark_attempt_error(pid, e.code)
        registry.report_config_error(e)
        CHECKOUTS.labels(provider=provider.name, outcome="config_error").inc()
        raise
    except ProviderUnavailableError as e:
        mark_attempt_error(pid, e.code)
        log.warning("payment provider %s unavailable for order %s: %s",
                    provider.name, order["number"], e)
        CHECKOUTS.labels(provider=provider.name, outcome="unavailable").inc()
        raise
    except PaymentError as e:
        mark_attempt_error(pid, e.code)
        CHECKOUTS.labels(provider=provider.name, outcome=e.code).inc()
        raise

    attach_intent(pid, intent)
    CHECKOUTS.labels(provider=provider.name,
                     outcome="redirect" if intent.redirect_url else "complete").inc()
    log.info("checkout order=%s provider=%s payment=%s", order["number"], provider.name, pid)
    return CheckoutResult(order=order, payment_id=pid, intent=intent)


def start_checkout(*, cart_id: int, provider: str, username: Optional[str] = None,
                   email: Optional[str] = None, phone: Optional[str] = None,
                   language: str = "EN") -> CheckoutResult:
    adapter = get_provider(provider)

    cart = load_cart(cart_id) if cart_id else None
    # someone else's cart looks exactly like a missing one
    if not cart or (cart["username"] and cart["username"] != username):
        raise CheckoutError("Cart not found", code="cart_not_found")
    if not cart["items"]:
        raise CheckoutError("Cart must contain at least one item", code="cart_empty")
    if not username and not (email or phone):
        raise CheckoutError("Email or phone is required for guest checkout",
                            code="contact_required")

    total = cart_total(cart)
    if total <= 0:
        raise CheckoutError("Cart total must be positive", code="cart_empty")

    order = create_pending_order(
        total=total,
        currency=(cfg("PAYMENT_CURRENCY") or "AMD").upper(),
        username=username, email=email, phone=phone, cart_id=cart["id"],
    )
    return _create_payment(order, adapter, language)


def retry_payment(order_number: str, provider: str, *, username: Optional[str] = None,
                  language: str = "EN") -> CheckoutResult:
    adapter = get_provider(provider)
    order = get_order(order_number)
    if not order or (order["username"] and order["username"] != username):
        raise CheckoutError("Order not found", code="order_not_found")
    if order["payment_status"] != PaymentStatus.PENDING.value:
        raise CheckoutError(f"Order is {order['payment_status']}", code="order_not_payable")
    return _create_payment(order, adapter, language)
