# tests/utils.py
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

from models.cart_store import create_cart
from models.orders_store import create_pending_order
from services.payments import arca, idram, signature

IDRAM_MERCHANT = "110000601"
IDRAM_SECRET = "idram-test-secret"
ARCA_SECRET = "arca-callback-secret"


def login_user(client, username, password):
    return client.post("/api/v1/auth/login",
                       json={"username": username, "password": password})


def make_cart(username=None, items=None):
    items = items or [
        {"sku": "TEA-01", "title": "Mountain tea", "quantity": 2, "unit_price": "12.50"},
        {"sku": "JAM-07", "title": "Apricot jam", "quantity": 1, "unit_price": "25.00"},
    ]
    return create_cart(username, items)


def make_order(number="ORD-1001", total="50.00", username=None):
    return create_pending_order(total=Decimal(total), currency="AMD",
                                username=username, email="buyer@example.am",
                                number=number)


def query_params(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def idram_callback(number="ORD-1001", amount="5000", status="OK",
                   trans_id="IDR-778812", secret=IDRAM_SECRET, merchant=IDRAM_MERCHANT):
    fields = {
        "EDP_REC_ACCOUNT": merchant,
        "EDP_REC_AMOUNT": amount,
        "EDP_BILL_NO": number,
        "EDP_TRANS_ID": trans_id,
        "EDP_PAYER_ACCOUNT": "200004512",
        "EDP_TRANS_STATUS": status,
    }
    fields[idram.SIGNATURE_FIELD] = signature.sign(
        secret, [fields[f] for f in idram.CALLBACK_FIELDS])
    return fields


def arca_callback(number="ORD-1001", operation="deposited", status="1",
                  md_order="0c8e5b1f-arca", amount="5000", secret=ARCA_SECRET):
    fields = {
        "mdOrder": md_order,
        "orderNumber": number,
        "operation": operation,
        "status": status,
        "amount": amount,
    }
    # the gateway sends the checksum upper-case
    fields[arca.SIGNATURE_FIELD] = signature.sign(
        secret, arca.callback_fields(fields), delimiter=";").upper()
    return fields
