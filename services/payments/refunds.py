# services/payments/refunds.py
from __future__ import annotations
import logging
from typing import Optional

from models.orders_store import get_order, mark_refunded
from models.payments_store import (
    claim_refund, get_latest_payment_for_order, release_refund, settle_refund,
)
from services.metrics import REFUNDS
from services.payments.base import RefundOutcome
from services.payments.errors import (
    CheckoutError, InvalidTransitionError, PaymentError, UnsupportedOperationError,
)
from services.payments.registry import get_provider
from services.payments.state import Outcome, PaymentStatus, can_refund

log = logging.getLogger(__name__)


def refund_order(order_number: str, amount_minor: Optional[int] = None) -> RefundOutcome:
    """
    Refund the paid attempt of an order through its provider.

    ``amount_minor=None`` refunds whatever is left on the attempt. Partial
    refunds accumulate on the attempt; the order moves paid -> refunded once
    they add up to the amount paid. The attempt is claimed before the provider
    is called, so a second refund racing this one gets a 409 instead of a
    second gateway call.
    """
    if amount_minor is not None and amount_minor <= 0:
        raise CheckoutError("Refund amount must be positive", code="refund_amount_invalid")

    order = get_order(order_number)
    if not order:
        raise CheckoutError("Order not found", code="order_not_found")
    if not can_refund(order["payment_status"]):
        raise InvalidTransitionError(order["payment_status"], PaymentStatus.REFUNDED.value)

    attempt = get_latest_payment_for_order(order["id"], status=PaymentStatus.PAID.value)
    if not attempt:
        raise InvalidTransitionError(order["payment_status"], PaymentStatus.REFUNDED.value)

    remaining = attempt["amount_minor"] - attempt["refunded_minor"]
    amount = remaining if amount_minor is None else amount_minor
    if amount > remaining:
        raise CheckoutError(f"Refund exceeds the {remaining} left to refund", code="refund_too_large")

    provider = get_provider(attempt["provider"])
    if not claim_refund(attempt["id"], amount):
        # another refund holds the attempt, or it was refunded in the meantime
        raise InvalidTransitionError(order["payment_status"], PaymentStatus.REFUNDED.value)

    payment_id = attempt["provider_transaction_id"] or attempt["external_payment_id"]
    ok = False
    try:
        outcome = provider.process_refund(payment_id, amount)
        ok = True
    except UnsupportedOperationError:
        REFUNDS.labels(provider=provider.name, outcome="unsupported").inc()
        raise
    except PaymentError as e:
        REFUNDS.labels(provider=provider.name, outcome=e.code).inc()
        log.warning("refund for order %s via %s failed: %s", order_number, provider.name, e)
        raise
    finally:
        if not ok:
            release_refund(attempt["id"])

    REFUNDS.labels(provider=provider.name, outcome="ok").inc()
    settled = settle_refund(attempt["id"], amount)
    if settled is None:
        log.error("refund of order %s accepted by %s but attempt %s was no longer claimed",
                  order_number, provider.name, attempt["id"])
    elif settled["status"] == PaymentStatus.REFUNDED.value:
        res = mark_refunded(order_number)
        if res.outcome == Outcome.CONFLICT:
            log.error("order %s refunded at %s but is now %s", order_number, provider.name, res.current)
    log.info("refund order=%s provider=%s amount=%s", order_number, provider.name, amount)
    return outcome
