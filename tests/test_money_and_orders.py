import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from models.orders_store import (
    apply_webhook_status, create_pending_order, generate_order_number, get_order, mark_refunded,
)
from services.payments.base import from_minor, mask, to_minor
from services.payments.state import Outcome
from tests.utils import make_order

pytestmark = pytest.mark.db


@pytest.mark.parametrize("amount,minor", [
    (Decimal("50.00"), 5000), ("12.5", 1250), (7, 700), ("0.005", 1), ("19.994", 1999),
])
def test_to_minor(amount, minor):
    assert to_minor(amount) == minor


def test_from_minor_and_mask():
    assert from_minor(5000) == Decimal("50.00")
    assert from_minor(1) == Decimal("0.01")
    assert mask("110000601") == "***0601"
    assert mask(None) == "NOT SET"


def test_order_number_shape():
    n = generate_order_number(datetime(2026, 10, 17, tzinfo=timezone.utc))
    assert re.fullmatch(r"261017-\d{8}", n)


def test_pending_order_gets_generated_number():
    o = create_pending_order(total=Decimal("12.30"), currency="amd", email="g@example.am")
    assert re.fullmatch(r"\d{6}-\d{8}", o["number"])
    assert o["payment_status"] == "pending"
    assert o["currency"] == "AMD"
    assert o["amount_minor"] == 1230


def test_explicit_duplicate_number_is_refused():
    make_order("ORD-7")
    with pytest.raises(RuntimeError):
        make_order("ORD-7")


def test_paid_without_amount_skips_guard():
    make_order("ORD-1")
    res = apply_webhook_status("ORD-1", "paid", provider="idram", transaction_id="t1")
    assert res.outcome == Outcome.APPLIED
    o = get_order("ORD-1")
    assert o["payment_status"] == "paid"
    assert o["paid_at"] is not None


def test_failed_ignores_amount():
    make_order("ORD-2")
    res = apply_webhook_status("ORD-2", "failed", provider="idram", amount_minor=1)
    assert res.outcome == Outcome.APPLIED
    assert get_order("ORD-2")["payment_status"] == "failed"


def test_amount_guard_blocks_paid():
    make_order("ORD-3", total="50.00")
    res = apply_webhook_status("ORD-3", "paid", provider="idram", amount_minor=4999)
    assert res.outcome == Outcome.AMOUNT_MISMATCH
    assert get_order("ORD-3")["payment_status"] == "pending"


def test_unknown_order_and_non_final_status():
    assert apply_webhook_status("nope", "paid", provider="idram").outcome == Outcome.NOT_FOUND
    assert apply_webhook_status("", "paid", provider="idram").outcome == Outcome.NOT_FOUND
    make_order("ORD-4")
    res = apply_webhook_status("ORD-4", "pending", provider="idram")
    assert res.outcome == Outcome.IGNORED
    assert res.current == "pending"


def test_mark_refunded_outcomes():
    make_order("ORD-5")
    assert mark_refunded("ORD-5").outcome == Outcome.CONFLICT
    apply_webhook_status("ORD-5", "paid", provider="idram")
    assert mark_refunded("ORD-5").outcome == Outcome.APPLIED
    assert mark_refunded("ORD-5").outcome == Outcome.NOOP
    assert mark_refunded("missing").outcome == Outcome.NOT_FOUND
    assert get_order("ORD-5")["payment_status"] == "refunded"
