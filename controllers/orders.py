# controllers/orders.py
from __future__ import annotations
from flask import Blueprint, request, jsonify, abort
from flask_login import current_user

from controllers.auth import current_username
from models.orders_store import get_order
from models.payments_store import get_latest_payment_for_order
from services.payments.checkout import retry_payment, start_checkout
from services.payments.registry import registry

orders_bp = Blueprint("orders", __name__)


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


# ----- checkout: cart -> pending order -> provider redirect -----

@orders_bp.post("/api/v1/orders/checkout")
def checkout():
    data = _payload()
    try:
        cart_id = int(data.get("cartId") or 0)
    except (TypeError, ValueError):
        cart_id = 0

    email = data.get("email")
    phone = data.get("phone")
    if current_user.is_authenticated:
        email = email or current_user.email
        phone = phone or current_user.phone

    result = start_checkout(
        cart_id=cart_id,
        provider=data.get("paymentMethod") or "idram",
        username=current_username(),
        email=email,
        phone=phone,
        language=data.get("language") or "EN",
    )
    return jsonify(result.to_json()), 201


@orders_bp.post("/api/v1/orders/<number>/pay")
def pay_again(number: str):
    data = _payload()
    result = retry_payment(
        number,
        data.get("paymentMethod") or "idram",
        username=current_username(),
        language=data.get("language") or "EN",
    )
    return jsonify(result.to_json()), 201


@orders_bp.get("/api/v1/orders/<number>")
def order_status(number: str):
    order = get_order(number)
    if not order or (order["username"] and order["username"] != current_username()):
        abort(404)
    latest = get_latest_payment_for_order(order["id"])
    return jsonify({
        "number": order["number"],
        "paymentStatus": order["payment_status"],
        "fulfillmentStatus": order["fulfillment_status"],
        "total": float(order["total"]),
        "currency": order["currency"],
        "payment": None if not latest else {
            "provider": latest["provider"],
            "status": latest["status"],
            "redirectUrl": latest["redirect_url"] if latest["status"] == "pending" else None,
        },
    })


@orders_bp.get("/api/v1/payments/providers")
def providers():
    return jsonify({"providers": registry.status()})
