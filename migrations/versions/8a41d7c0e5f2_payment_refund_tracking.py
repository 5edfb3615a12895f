"""payment refund tracking

Revision ID: 8a41d7c0e5f2
Revises: 3c1f0a9d2b64
Create Date: 2026-10-24 09:41:37.208114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8a41d7c0e5f2'
down_revision: Union[str, Sequence[str], None] = '3c1f0a9d2b64'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OLD_STATUSES = "status in ('pending','paid','failed','cancelled','refunded','error')"
NEW_STATUSES = "status in ('pending','paid','refunding','failed','cancelled','refunded','error')"


def upgrade():
    with op.batch_alter_table("payments") as batch:
        batch.add_column(sa.Column("refunded_minor", sa.Integer(),
                                   nullable=False, server_default="0"))
        batch.drop_constraint("ck_payments_status", type_="check")
        batch.create_check_constraint("ck_payments_status", NEW_STATUSES)
        batch.create_check_constraint(
            "ck_payments_refunded_le_amount",
            "refunded_minor >= 0 AND refunded_minor <= amount_minor")


def downgrade():
    with op.batch_alter_table("payments") as batch:
        batch.drop_constraint("ck_payments_refunded_le_amount", type_="check")
        batch.drop_constraint("ck_payments_status", type_="check")
        batch.create_check_constraint("ck_payments_status", OLD_STATUSES)
        batch.drop_column("refunded_minor")
