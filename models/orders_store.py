# models/orders_store.py (Postgres / SQLAlchemy)
"""
Order rows as the payments layer sees them.

Every payment-status change is a single conditional UPDATE keyed on the
expected current status, so two concurrent callbacks for the same order
can never both win. The order row and the payment attempt the callback
settles move in the same transaction.
"""

from __future__ import annotations
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from models.base import session_scope
from models.schema import Order, Payment
from services.payments.base import from_minor, to_minor
from services.payments.state import (
    Outcome, PaymentStatus, TransitionResult, WEBHOOK_TARGETS, plan_webhook_transition,
)

_NUMBER_ATTEMPTS = 5


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number(now: datetime | None = None) -> str:
    now = now or _now_utc()
    return f"{now:%y%m%d}-{secrets.randbelow(10**8):08d}"


def _order_dict(o: Order) -> dict:
    return {
        "id": o.id,
        "number": o.number,
        "username": o.username,
        "customer_email": o.customer_email,
        "customer_phone": o.customer_phone,
        "total": Decimal(o.total),
        "amount_minor": to_minor(o.total),
        "currency": o.currency,
        "payment_status": o.payment_status,
        "fulfillment_status": o.fulfillment_status,
        "created_at": o.created_at,
        "paid_at": o.paid_at,
    }


def create_pending_order(*, total: Decimal, currency: str, username: str | None = None,
                         email: str | None = None, phone: str | None = None,
                         cart_id: int | None = None, number: str | None = None) -> dict:
    """Insert an order in 'pending'. A generated number is retried on collision."""
    attempts = 1 if number else _NUMBER_ATTEMPTS
    last_err: Exception | None = None
    for _ in range(attempts):
        num = number or generate_order_number()
        try:
            with session_scope() as s:
                now = _now_utc()
                o = Order(
                    number=num, username=username,
                    customer_email=email, customer_phone=phone, cart_id=cart_id,
                    total=Decimal(total), currency=currency.upper(),
                    payment_status=PaymentStatus.PENDING.value,
                    fulfillment_status="unfulfilled",
                    created_at=now, updated_at=now,
                )
                s.add(o)
                s.flush()
                return _order_dict(o)
        except IntegrityError as e:
            last_err = e
    raise RuntimeError("Could not allocate a unique order number") from last_err


def get_order(number: str) -> Optional[dict]:
    if not number:
        return None
    with session_scope() as s:
        o = s.execute(select(Order).where(Order.number == number)).scalars().first()
        return _order_dict(o) if o else None


def _status_of(s, number: str) -> Optional[str]:
    row = s.execute(select(Order.payment_status).where(Order.number == number)).first()
    return row[0] if row else None


def _settle_attempt(s, number: str, target: str, *, provider: str,
                    transaction_id: str | None, amount_minor: int | None,
                    now: datetime) -> None:
    """
    Record the final status on the attempt the callback is about. The attempt
    whose provider id matches ``transaction_id`` wins, then the newest open
    attempt of ``provider``. The order's other open attempts are cancelled.
    A 'paid' callback with no matching attempt gets one recorded so the
    payment can be refunded later.
    """
    o = s.execute(select(Order).where(Order.number == number)).scalars().first()
    # an attempt whose intent call errored may still have reached the provider
    open_statuses = (PaymentStatus.PENDING.value, "error")
    q = (select(Payment)
         .where(Payment.order_id == o.id, Payment.provider == provider,
                Payment.status.in_(open_statuses))
         .order_by(Payment.id.desc()))
    attempt = None
    if transaction_id:
        attempt = s.execute(q.where(Payment.external_payment_id == transaction_id)).scalars().first()
    if attempt is None:
        attempt = s.execute(q).scalars().first()

    others = [Payment.order_id == o.id, Payment.status == PaymentStatus.PENDING.value]
    if attempt is not None:
        others.append(Payment.id != attempt.id)
    s.execute(update(Payment).where(*others)
              .values(status=PaymentStatus.CANCELLED.value, updated_at=now)
              .execution_options(synchronize_session=False))

    if attempt is not None:
        attempt.status = target
        attempt.provider_transaction_id = transaction_id
        attempt.error_code = None
        attempt.updated_at = now
    elif target == PaymentStatus.PAID.value:
        s.add(Payment(
            order_id=o.id, provider=provider, status=target,
            amount_minor=amount_minor if amount_minor is not None else to_minor(o.total),
            currency=o.currency, provider_transaction_id=transaction_id,
            created_at=now, updated_at=now,
        ))


def apply_webhook_status(number: str, target: str, *, provider: str,
                         transaction_id: str | None = None,
                         amount_minor: int | None = None) -> TransitionResult:
    """
    Move a pending order to ``target`` (paid|failed|cancelled) if and only if
    it is still pending. When ``amount_minor`` is given for a 'paid' target it
    must equal the order total.
    """
    target = PaymentStatus(target).value
    if not number:
        return TransitionResult(Outcome.NOT_FOUND, None, None)

    with session_scope() as s:
        if PaymentStatus(target) not in WEBHOOK_TARGETS:
            cur = _status_of(s, number)
            return TransitionResult(Outcome.IGNORED if cur else Outcome.NOT_FOUND, cur, cur)

        now = _now_utc()
        values = {"payment_status": target, "updated_at": now}
        if target == PaymentStatus.PAID.value:
            values["paid_at"] = now
        elif target == PaymentStatus.CANCELLED.value:
            values["cancelled_at"] = now

        conds = [Order.number == number, Order.payment_status == PaymentStatus.PENDING.value]
        if target == PaymentStatus.PAID.value and amount_minor is not None:
            conds.append(Order.total == from_minor(amount_minor))

        # write first: the UPDATE takes the row/writer lock before anything is read
        res = s.execute(update(Order).where(*conds).values(**values)
                        .execution_options(synchronize_session=False))
        if res.rowcount == 1:
            _settle_attempt(s, number, target, provider=provider,
                            transaction_id=transaction_id, amount_minor=amount_minor, now=now)
            return TransitionResult(Outcome.APPLIED, PaymentStatus.PENDING.value, target)

        cur = _status_of(s, number)
        if cur is None:
            return TransitionResult(Outcome.NOT_FOUND, None, None)
        if cur == PaymentStatus.PENDING.value:
            # only the amount guard can stop a pending -> paid update
            return TransitionResult(Outcome.AMOUNT_MISMATCH, cur, cur)
        return TransitionResult(plan_webhook_transition(cur, target), cur, cur)


def mark_refunded(number: str) -> TransitionResult:
    """paid -> refunded on the order row; anything else is reported back unchanged."""
    with session_scope() as s:
        now = _now_utc()
        res = s.execute(
            update(Order)
            .where(Order.number == number, Order.payment_status == PaymentStatus.PAID.value)
            .values(payment_status=PaymentStatus.REFUNDED.value, refunded_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            return TransitionResult(Outcome.APPLIED, PaymentStatus.PAID.value,
                                    PaymentStatus.REFUNDED.value)
        cur = _status_of(s, number)
        if cur is None:
            return TransitionResult(Outcome.NOT_FOUND, None, None)
        if cur == PaymentStatus.REFUNDED.value:
            return TransitionResult(Outcome.NOOP, cur, cur)
        return TransitionResult(Outcome.CONFLICT, cur, cur)
