# models/cart_store.py
"""
Read side of the storefront cart, as far as checkout needs it.
Pricing is already locked on each item (unit_price snapshot).
"""

from __future__ import annotations
from decimal import Decimal
from typing import Iterable, Optional

from models.base import session_scope
from models.schema import Cart, CartItem


def create_cart(username: str | None, items: Iterable[dict], locale: str = "en") -> int:
    """items: [{"sku", "title", "quantity", "unit_price"}]"""
    with session_scope() as s:
        c = Cart(username=username, locale=locale)
        for it in items:
            c.items.append(CartItem(
                sku=it["sku"],
                title=it.get("title") or it["sku"],
                quantity=int(it["quantity"]),
                unit_price=Decimal(str(it["unit_price"])),
            ))
        s.add(c)
        s.flush()
        return c.id


def load_cart(cart_id: int) -> Optional[dict]:
    with session_scope() as s:
        c = s.get(Cart, cart_id)
        if not c:
            return None
        return {
            "id": c.id,
            "username": c.username,
            "locale": c.locale,
            "items": [
                {"sku": i.sku, "title": i.title, "quantity": i.quantity,
                 "unit_price": Decimal(i.unit_price)}
                for i in c.items
            ],
        }


def cart_total(cart: dict) -> Decimal:
    total = sum((Decimal(i["unit_price"]) * int(i["quantity"]) for i in cart["items"]), Decimal("0"))
    return total.quantize(Decimal("0.01"))
