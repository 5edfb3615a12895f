# models/payments_store.py (Postgres / SQLAlchemy)
from __future__ import annotations
import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from models.base import session_scope
from models.schema import Payment, PaymentEvent
from services.payments.base import PaymentIntent

_PAYMENT_COLS = ("id", "order_id", "provider", "status", "amount_minor", "currency",
                 "refunded_minor", "external_payment_id", "provider_transaction_id",
                 "redirect_url", "idempotency_key", "error_code", "expires_at",
                 "created_at", "updated_at")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _payment_dict(p: Payment) -> dict:
    return {c: getattr(p, c) for c in _PAYMENT_COLS}


def create_payment_attempt(order_id: int, provider: str, amount_minor: int, currency: str) -> int:
    now = _now_utc()
    with session_scope() as s:
        p = Payment(
            order_id=order_id, provider=provider, status="pending",
            amount_minor=amount_minor, currency=currency,
            created_at=now, updated_at=now,
        )
        s.add(p)
        s.flush()
        # one attempt per (provider, key); the row id makes it unique
        p.idempotency_key = f"{provider}_{order_id}_{p.id}"
        return p.id


def attach_intent(payment_id: int, intent: PaymentIntent) -> None:
    with session_scope() as s:
        p = s.get(Payment, payment_id)
        if not p:
            return
        p.external_payment_id = intent.provider_payment_id
        p.redirect_url = intent.redirect_url
        p.expires_at = intent.expires_at
        p.updated_at = _now_utc()


def mark_attempt_error(payment_id: int, error_code: str) -> None:
    with session_scope() as s:
        p = s.get(Payment, payment_id)
        if not p or p.status != "pending":
            return
        p.status = "error"
        p.error_code = error_code
        p.updated_at = _now_utc()


def get_payment(payment_id: int) -> Optional[dict]:
    with session_scope() as s:
        p = s.get(Payment, payment_id)
        return _payment_dict(p) if p else None


def get_latest_payment_for_order(order_id: int, status: str | None = None) -> Optional[dict]:
    with session_scope() as s:
        q = select(Payment).where(Payment.order_id == order_id)
        if status:
            q = q.where(Payment.status == status)
        p = s.execute(q.order_by(Payment.id.desc()).limit(1)).scalars().first()
        return _payment_dict(p) if p else None


REFUND_CLAIM_STATUS = "refunding"


def claim_refund(payment_id: int, amount_minor: int) -> bool:
    """
    Reserve a paid attempt for one refund call. The conditional UPDATE lets
    exactly one caller through; everyone else sees False until the claim is
    settled or released.
    """
    with session_scope() as s:
        res = s.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == "paid",
                   Payment.refunded_minor + amount_minor <= Payment.amount_minor)
            .values(status=REFUND_CLAIM_STATUS, updated_at=_now_utc())
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1


def settle_refund(payment_id: int, amount_minor: int) -> Optional[dict]:
    """Book a refund the provider accepted. The attempt ends refunded once fully refunded."""
    with session_scope() as s:
        total = Payment.refunded_minor + amount_minor
        res = s.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == REFUND_CLAIM_STATUS)
            .values(refunded_minor=total,
                    status=case((total >= Payment.amount_minor, "refunded"), else_="paid"),
                    updated_at=_now_utc())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return None
        return _payment_dict(s.get(Payment, payment_id))


def release_refund(payment_id: int) -> None:
    with session_scope() as s:
        s.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == REFUND_CLAIM_STATUS)
            .values(status="paid", updated_at=_now_utc())
            .execution_options(synchronize_session=False)
        )


def record_webhook_event(provider: str, external_event_id: Optional[str], raw_payload: dict,
                         signature_ok: bool, *, order_number: str | None = None,
                         status: str | None = None, outcome: str | None = None) -> int:
    """Append a callback to the receipt log; a repeated (provider, event id) returns the first row."""
    raw_text = json.dumps(raw_payload, ensure_ascii=False, separators=(",", ":"),
                          sort_keys=True, default=str)
    try:
        with session_scope() as s:
            e = PaymentEvent(
                provider=provider, external_event_id=external_event_id,
                order_number=order_number, status=status, outcome=outcome,
                raw=raw_text, signature_ok=1 if signature_ok else 0, received_at=_now_utc(),
            )
            s.add(e)
            s.flush()
            return e.id
    except IntegrityError:
        with session_scope() as s:
            row = s.execute(
                select(PaymentEvent.id).where(
                    (PaymentEvent.provider == provider) & (
                        PaymentEvent.external_event_id == external_event_id)
                )
            ).first()
            return int(row[0]) if row else 0


def list_events_for_order(order_number: str) -> list[dict]:
    with session_scope() as s:
        rows = s.execute(
            select(PaymentEvent).where(PaymentEvent.order_number == order_number)
            .order_by(PaymentEvent.id)
        ).scalars().all()
        return [
            {"id": e.id, "provider": e.provider, "external_event_id": e.external_event_id,
             "status": e.status, "outcome": e.outcome, "signature_ok": bool(e.signature_ok),
             "received_at": e.received_at}
            for e in rows
        ]
