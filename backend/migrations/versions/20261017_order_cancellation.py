"""Order cancellation and item replacement tracking

Revision ID: 20261017_order_cancellation
Revises: 20261017_initial_ledger
Create Date: 2026-10-17 14:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_order_cancellation"
down_revision = "20261017_initial_ledger"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.add_column(sa.Column("replaced_transaction_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")))
        batch_op.add_column(sa.Column("order_status", sa.String(length=16), nullable=False, server_default="Open"))
        batch_op.add_column(sa.Column("cancellation_reason", sa.Text(), nullable=True))
        batch_op.add_column(sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("original_invoice_status", sa.String(length=16), nullable=True))
        batch_op.add_column(sa.Column("original_delivery_status", sa.String(length=16), nullable=True))
        batch_op.add_column(sa.Column("cancellation_transaction_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")))
        batch_op.create_foreign_key("fk_orders_cancelled_by_user", "users", ["cancelled_by_user_id"], ["id"])

    with op.batch_alter_table("ledger_entries", schema=None) as batch_op:
        batch_op.add_column(sa.Column("original_transaction_id", sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column("cancelled_from_order", sa.String(length=64), nullable=True))
        batch_op.add_column(sa.Column("cancellation_reason", sa.Text(), nullable=True))
        batch_op.create_index("ix_ledger_entries_original_transaction_id", ["original_transaction_id"], unique=False)


def downgrade():
    with op.batch_alter_table("ledger_entries", schema=None) as batch_op:
        batch_op.drop_index("ix_ledger_entries_original_transaction_id")
        batch_op.drop_column("cancellation_reason")
        batch_op.drop_column("cancelled_from_order")
        batch_op.drop_column("original_transaction_id")

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.drop_constraint("fk_orders_cancelled_by_user", type_="foreignkey")
        batch_op.drop_column("cancellation_transaction_ids")
        batch_op.drop_column("original_delivery_status")
        batch_op.drop_column("original_invoice_status")
        batch_op.drop_column("cancelled_at")
        batch_op.drop_column("cancelled_by_user_id")
        batch_op.drop_column("cancellation_reason")
        batch_op.drop_column("order_status")
        batch_op.drop_column("replaced_transaction_ids")
