# controllers/payments.py
from __future__ import annotations
from flask import Blueprint, request, current_app

from services.payments.reconciler import handle_webhook

payments_bp = Blueprint("payments", __name__)


def _callback_fields() -> dict:
    # form posts (Idram), query-string callbacks (ArCa) or JSON; form wins over args
    fields = request.args.to_dict()
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        fields.update({k: v for k, v in body.items() if not isinstance(v, (dict, list))})
    fields.update(request.form.to_dict())
    return fields


# ----- provider webhook (no auth, signature-verified) -----

@payments_bp.route("/payments/webhook/<provider>", methods=["GET", "POST"])
def webhook(provider: str):
    """
    Per-provider callback endpoint. The adapter verifies the signature;
    the reply body/status is whatever that provider's protocol expects.
    This blueprint must be CSRF-exempt in app.py.
    """
    result = handle_webhook(provider, _callback_fields())
    current_app.logger.info("webhook %s outcome=%s order=%s",
                            provider, result.outcome, result.order_number)
    reply = result.reply
    return current_app.response_class(reply.body, status=reply.status,
                                      mimetype=reply.content_type)
