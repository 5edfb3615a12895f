# models/schema.py
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Numeric, String, Text, Integer, DateTime, ForeignKey, CheckConstraint,
    UniqueConstraint, Index,
)
from models.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- USERS


class User(Base):
    __tablename__ = "users"
    username: Mapped[str] = mapped_column(String, primary_key=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(
        String, nullable=False)  # ('admin','user')
    email: Mapped[str | None] = mapped_column(String)
    phone: Mapped[str | None] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    __table_args__ = (
        CheckConstraint("role in ('admin','user')", name="ck_users_role"),
    )


# --- CART (owned by the storefront; read-only for checkout)


class Cart(Base):
    __tablename__ = "carts"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    # NULL for guest carts
    username: Mapped[str | None] = mapped_column(String)
    locale: Mapped[str] = mapped_column(String(8), nullable=False, default="en")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class CartItem(Base):
    __tablename__ = "cart_items"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    cart_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "carts.id", ondelete="CASCADE"), nullable=False)
    sku: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # price locked when the item was added
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    cart = relationship("Cart", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_cart_items_qty_gt_0"),
        CheckConstraint("unit_price >= 0", name="ck_cart_items_price_ge_0"),
        Index("idx_cart_items_cart", "cart_id"),
    )


# --- ORDERS (payment_status is the only column this service moves)


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    # e.g. 251017-04817263; immutable once assigned
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    username: Mapped[str | None] = mapped_column(String)
    customer_email: Mapped[str | None] = mapped_column(String)
    customer_phone: Mapped[str | None] = mapped_column(String)
    cart_id: Mapped[int | None] = mapped_column(Integer)

    total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="AMD")
    payment_status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending")
    fulfillment_status: Mapped[str] = mapped_column(
        String, nullable=False, default="unfulfilled")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("number", name="uq_orders_number"),
        CheckConstraint("total >= 0", name="ck_orders_total_ge_0"),
        CheckConstraint(
            "payment_status in ('pending','paid','failed','cancelled','refunded')",
            name="ck_orders_payment_status"),
        Index("idx_orders_username", "username"),
    )


class Payment(Base):
    """One row per payment attempt (the persisted payment intent)."""
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey(
        "orders.id", ondelete="CASCADE"), nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending")
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    # sum of successful refunds against this attempt
    refunded_minor: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0")
    external_payment_id: Mapped[str | None] = mapped_column(String)
    provider_transaction_id: Mapped[str | None] = mapped_column(String)
    redirect_url: Mapped[str | None] = mapped_column(Text)
    idempotency_key: Mapped[str | None] = mapped_column(String)
    error_code: Mapped[str | None] = mapped_column(String)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_payments_amount_ge_0"),
        CheckConstraint(
            "status in ('pending','paid','refunding','failed','cancelled','refunded','error')",
            name="ck_payments_status"),
        CheckConstraint("refunded_minor >= 0 AND refunded_minor <= amount_minor",
                        name="ck_payments_refunded_le_amount"),
        UniqueConstraint("provider", "idempotency_key",
                         name="uq_payments_provider_idem"),
        Index("idx_payments_order", "order_id"),
        Index("idx_payments_external", "provider", "external_payment_id"),
    )


class PaymentEvent(Base):
    """Receipt log of inbound provider callbacks (not the idempotency mechanism)."""
    __tablename__ = "payment_events"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    # only set for verified callbacks
    external_event_id: Mapped[str | None] = mapped_column(String)
    order_number: Mapped[str | None] = mapped_column(String(32))
    status: Mapped[str | None] = mapped_column(String)
    outcome: Mapped[str | None] = mapped_column(String)
    raw: Mapped[str] = mapped_column(Text, nullable=False)
    signature_ok: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    __table_args__ = (
        UniqueConstraint("provider", "external_event_id",
                         name="uq_paymentevents_provider_external"),
        CheckConstraint("signature_ok IN (0,1)",
                        name="ck_paymentevents_signature_ok"),
        Index("idx_paymentevents_order", "order_number"),
    )
