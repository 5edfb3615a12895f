"""initial orders and payments schema

Revision ID: 3c1f0a9d2b64
Revises:
Create Date: 2026-10-17 10:02:11.514203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f0a9d2b64'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("username", sa.String(), primary_key=True),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("email", sa.String()),
        sa.Column("phone", sa.String()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("role in ('admin','user')", name="ck_users_role"),
    )

    op.create_table(
        "carts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String()),
        sa.Column("locale", sa.String(8), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("cart_id", sa.Integer(),
                  sa.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sku", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_cart_items_qty_gt_0"),
        sa.CheckConstraint("unit_price >= 0", name="ck_cart_items_price_ge_0"),
    )
    op.create_index("idx_cart_items_cart", "cart_items", ["cart_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("username", sa.String()),
        sa.Column("customer_email", sa.String()),
        sa.Column("customer_phone", sa.String()),
        sa.Column("cart_id", sa.Integer()),
        sa.Column("total", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_status", sa.String(), nullable=False),
        sa.Column("fulfillment_status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("number", name="uq_orders_number"),
        sa.CheckConstraint("total >= 0", name="ck_orders_total_ge_0"),
        sa.CheckConstraint(
            "payment_status in ('pending','paid','failed','cancelled','refunded')",
            name="ck_orders_payment_status"),
    )
    op.create_index("idx_orders_username", "orders", ["username"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(),
                  sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("external_payment_id", sa.String()),
        sa.Column("provider_transaction_id", sa.String()),
        sa.Column("redirect_url", sa.Text()),
        sa.Column("idempotency_key", sa.String()),
        sa.Column("error_code", sa.String()),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount_minor >= 0", name="ck_payments_amount_ge_0"),
        sa.CheckConstraint(
            "status in ('pending','paid','failed','cancelled','refunded','error')",
            name="ck_payments_status"),
        sa.UniqueConstraint("provider", "idempotency_key",
                            name="uq_payments_provider_idem"),
    )
    op.create_index("idx_payments_order", "payments", ["order_id"])
    op.create_index("idx_payments_external", "payments",
                    ["provider", "external_payment_id"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("external_event_id", sa.String()),
        sa.Column("order_number", sa.String(32)),
        sa.Column("status", sa.String()),
        sa.Column("outcome", sa.String()),
        sa.Column("raw", sa.Text(), nullable=False),
        sa.Column("signature_ok", sa.Integer(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("provider", "external_event_id",
                            name="uq_paymentevents_provider_external"),
        sa.CheckConstraint("signature_ok IN (0,1)",
                           name="ck_paymentevents_signature_ok"),
    )
    op.create_index("idx_paymentevents_order",
                    "payment_events", ["order_number"])


def downgrade():
    op.drop_index("idx_paymentevents_order", table_name="payment_events")
    op.drop_table("payment_events")
    op.drop_index("idx_payments_external", table_name="payments")
    op.drop_index("idx_payments_order", table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_orders_username", table_name="orders")
    op.drop_table("orders")
    op.drop_index("idx_cart_items_cart", table_name="cart_items")
    op.drop_table("cart_items")
    op.drop_table("carts")
    op.drop_table("users")
