import threading
import time

import pytest

from models.orders_store import apply_webhook_status, get_order
from models.payments_store import (
    claim_refund, create_payment_attempt, get_latest_payment_for_order, get_payment,
)
from models.users_db import create_user
from services.metrics import APP_REGISTRY
from services.payments import arca
from services.payments.errors import InvalidTransitionError, UnsupportedOperationError
from services.payments.reconciler import handle_webhook
from services.payments.refunds import refund_order
from tests.utils import arca_callback, idram_callback, login_user, make_order

pytestmark = pytest.mark.db


class GatewayReply:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


@pytest.fixture
def refund_calls(monkeypatch):
    calls = {"sent": [], "reply": {"errorCode": "0"}}

    def fake_post(url, data=None, timeout=None):
        calls["sent"].append({"url": url, "data": data})
        return GatewayReply(calls["reply"])

    monkeypatch.setattr(arca.requests, "post", fake_post)
    return calls


@pytest.fixture
def paid_arca_order():
    o = make_order("ORD-3001", total="50.00")
    pid = create_payment_attempt(o["id"], "arca", 5000, "AMD")
    res = handle_webhook("arca", arca_callback(number="ORD-3001", md_order="md-3001"))
    assert res.transition.changed
    return o, pid


def test_admin_full_refund_moves_order_to_refunded(client, login_admin, paid_arca_order, refund_calls):
    _, pid = paid_arca_order
    r = client.post("/admin/orders/ORD-3001/refund", json={})
    assert r.status_code == 200, r.get_data(as_text=True)
    assert r.get_json() == {"number": "ORD-3001", "provider": "arca",
                            "amountMinor": 5000, "paymentStatus": "refunded"}

    sent = refund_calls["sent"][0]
    assert sent["url"].endswith("/refund.do")
    assert sent["data"]["orderId"] == "md-3001"
    assert sent["data"]["amount"] == "5000"

    o = get_order("ORD-3001")
    assert o["payment_status"] == "refunded"
    assert get_payment(pid)["status"] == "refunded"

    # a refunded order cannot be refunded again
    r = client.post("/admin/orders/ORD-3001/refund", json={})
    assert r.status_code == 409
    assert r.get_json()["error"] == "invalid_transition"


def test_partial_refund_keeps_order_paid(paid_arca_order, refund_calls):
    out = refund_order("ORD-3001", 2000)
    assert out.amount_minor == 2000
    assert refund_calls["sent"][0]["data"]["amount"] == "2000"
    assert get_order("ORD-3001")["payment_status"] == "paid"
    assert get_payment(paid_arca_order[1])["refunded_minor"] == 2000


def test_refund_larger_than_total(client, login_admin, paid_arca_order, refund_calls):
    r = client.post("/admin/orders/ORD-3001/refund", json={"amountMinor": 5001})
    assert r.status_code == 400
    assert r.get_json()["error"] == "refund_too_large"
    assert refund_calls["sent"] == []


def test_bad_amount_is_rejected(client, login_admin, paid_arca_order):
    r = client.post("/admin/orders/ORD-3001/refund", json={"amountMinor": "lots"})
    assert r.status_code == 400


def test_declined_refund(client, login_admin, paid_arca_order, refund_calls):
    refund_calls["reply"] = {"errorCode": "7", "errorMessage": "Refund amount exceeds"}
    r = client.post("/admin/orders/ORD-3001/refund", json={})
    assert r.status_code == 502
    assert r.get_json()["error"] == "refund_declined"
    assert get_order("ORD-3001")["payment_status"] == "paid"
    # the claim is released so the refund can be retried
    assert get_payment(paid_arca_order[1])["status"] == "paid"
    refund_calls["reply"] = {"errorCode": "0"}
    assert client.post("/admin/orders/ORD-3001/refund", json={}).status_code == 200


def test_idram_refund_is_unsupported(client, login_admin):
    o = make_order("ORD-1001")
    create_payment_attempt(o["id"], "idram", 5000, "AMD")
    handle_webhook("idram", idram_callback())
    before = APP_REGISTRY.get_sample_value(
        "payments_refunds_total", {"provider": "idram", "outcome": "unsupported"}) or 0.0

    with pytest.raises(UnsupportedOperationError):
        refund_order("ORD-1001")

    r = client.post("/admin/orders/ORD-1001/refund", json={})
    assert r.status_code == 422
    body = r.get_json()
    assert body["error"] == "unsupported_operation"
    assert body["retryable"] is False
    assert get_order("ORD-1001")["payment_status"] == "paid"
    assert APP_REGISTRY.get_sample_value(
        "payments_refunds_total", {"provider": "idram", "outcome": "unsupported"}) == before + 2


def test_refund_of_pending_or_missing_order(client, login_admin):
    make_order("ORD-5")
    r = client.post("/admin/orders/ORD-5/refund", json={})
    assert r.status_code == 409

    # paid attempt already held by another refund
    o = make_order("ORD-6")
    apply_webhook_status("ORD-6", "paid", provider="arca", transaction_id="md-6")
    assert claim_refund(get_latest_payment_for_order(o["id"], status="paid")["id"], 5000)
    assert client.post("/admin/orders/ORD-6/refund", json={}).status_code == 409

    r = client.post("/admin/orders/NOPE/refund", json={})
    assert r.status_code == 404
    assert r.get_json()["error"] == "order_not_found"


def test_refund_requires_admin(client):
    make_order("ORD-7")
    assert client.post("/admin/orders/ORD-7/refund", json={}).status_code == 401

    create_user("carol", "carol-pw")
    login_user(client, "carol", "carol-pw")
    r = client.post("/admin/orders/ORD-7/refund", json={})
    assert r.status_code == 403
    client.post("/api/v1/auth/logout")


@pytest.mark.parametrize("amount", [0, -100])
def test_non_positive_amount_is_rejected(client, login_admin, paid_arca_order, refund_calls, amount):
    r = client.post("/admin/orders/ORD-3001/refund", json={"amountMinor": amount})
    assert r.status_code == 400
    assert r.get_json()["error"] == "refund_amount_invalid"
    assert refund_calls["sent"] == []
    assert get_order("ORD-3001")["payment_status"] == "paid"
    assert get_payment(paid_arca_order[1])["status"] == "paid"


def test_partial_refunds_add_up_to_refunded(client, login_admin, paid_arca_order, refund_calls):
    _, pid = paid_arca_order
    assert client.post("/admin/orders/ORD-3001/refund", json={"amountMinor": 3000}).status_code == 200

    # only 2000 is left on the attempt
    r = client.post("/admin/orders/ORD-3001/refund", json={"amountMinor": 3000})
    assert r.status_code == 400
    assert r.get_json()["error"] == "refund_too_large"
    assert len(refund_calls["sent"]) == 1

    r = client.post("/admin/orders/ORD-3001/refund", json={"amountMinor": 2000})
    assert r.status_code == 200
    assert r.get_json()["paymentStatus"] == "refunded"
    p = get_payment(pid)
    assert p["status"] == "refunded"
    assert p["refunded_minor"] == 5000


def test_remaining_amount_is_the_default(paid_arca_order, refund_calls):
    refund_order("ORD-3001", 1500)
    out = refund_order("ORD-3001")
    assert out.amount_minor == 3500
    assert refund_calls["sent"][-1]["data"]["amount"] == "3500"
    assert get_order("ORD-3001")["payment_status"] == "refunded"


def test_concurrent_refunds_call_gateway_once(paid_arca_order, refund_calls, monkeypatch):
    recorded_post = arca.requests.post

    def gateway_takes_a_while(url, data=None, timeout=None):
        time.sleep(0.3)
        return recorded_post(url, data=data, timeout=timeout)

    monkeypatch.setattr(arca.requests, "post", gateway_takes_a_while)

    barrier = threading.Barrier(2)
    done, errors = [], []

    def run():
        try:
            barrier.wait(timeout=10)
            done.append(refund_order("ORD-3001"))
        except InvalidTransitionError as e:
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(done) == 1
    assert len(errors) == 1
    assert len(refund_calls["sent"]) == 1
    assert refund_calls["sent"][0]["url"].endswith("/refund.do")
    assert get_order("ORD-3001")["payment_status"] == "refunded"
    assert get_payment(paid_arca_order[1])["refunded_minor"] == 5000
