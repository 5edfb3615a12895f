# controllers/admin.py
from __future__ import annotations
from flask import Blueprint, request, jsonify, abort, current_app
from flask_login import login_required, current_user

from controllers.auth import admin_required
from models.orders_store import get_order
from models.payments_store import list_events_for_order
from services.payments.refunds import refund_order

admin_bp = Blueprint("admin", __name__)


@admin_bp.post("/admin/orders/<number>/refund")
@login_required
@admin_required
def refund(number: str):
    data = request.get_json(silent=True) or {}
    amount = data.get("amountMinor")
    try:
        amount = int(amount) if amount not in (None, "") else None
    except (TypeError, ValueError):
        return jsonify({"error": "amountMinor must be an integer"}), 400

    outcome = refund_order(number, amount)
    current_app.logger.info("admin %s refunded order %s", current_user.username, number)
    order = get_order(number)
    return jsonify({
        "number": number,
        "provider": outcome.provider,
        "amountMinor": outcome.amount_minor,
        "paymentStatus": order["payment_status"] if order else None,
    })


@admin_bp.get("/admin/orders/<number>/payment-events")
@login_required
@admin_required
def payment_events(number: str):
    if not get_order(number):
        abort(404)
    rows = list_events_for_order(number)
    for r in rows:
        r["received_at"] = r["received_at"].isoformat() if r["received_at"] else None
    return jsonify({"number": number, "events": rows})
