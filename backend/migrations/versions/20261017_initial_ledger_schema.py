"""Initial ledger schema: users, sessions, assets, ledger entries, orders, demos, sequence counters

Revision ID: 20261017_initial_ledger
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_username", "users", ["username"])

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(length=255), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"])
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "assets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("serial_number", sa.String(length=128), nullable=False),
        sa.Column("serial_key", sa.String(length=128), nullable=False),
        sa.Column("equipment_category", sa.String(length=128), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("size", sa.String(length=64), nullable=True),
        sa.Column("batch", sa.String(length=64), nullable=True),
        sa.Column("remark", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Active"),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.UniqueConstraint("serial_key", name="uq_assets_serial_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_assets_status", "assets", ["status"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("serial_number", sa.String(length=128), nullable=False),
        sa.Column("serial_key", sa.String(length=128), nullable=False),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("customer_dealer", sa.String(length=255), nullable=True),
        sa.Column("customer_client", sa.String(length=255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("occurred_at_text", sa.String(length=64), nullable=True),
        sa.Column("entry_no", sa.Integer(), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("invoice_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("warranty_type", sa.String(length=64), nullable=True),
        sa.Column("warranty_period", sa.Integer(), nullable=True),
        sa.Column("demo_purpose", sa.String(length=255), nullable=True),
        sa.Column("expected_return_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("original_demo_transaction_id", sa.Integer(), nullable=True),
        sa.Column("returned_from_demo", sa.String(length=64), nullable=True),
        sa.Column("equipment_category", sa.String(length=128), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("size", sa.String(length=64), nullable=True),
        sa.Column("batch", sa.String(length=64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=True),
        sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("transaction_id", name="uq_ledger_entries_transaction_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_entries_type", "ledger_entries", ["type"])
    op.create_index("ix_ledger_entries_status", "ledger_entries", ["status"])
    op.create_index("ix_ledger_entries_serial_key", "ledger_entries", ["serial_key"])
    op.create_index("ix_ledger_entries_occurred_at", "ledger_entries", ["occurred_at"])
    op.create_index("ix_ledger_entries_original_demo_transaction_id", "ledger_entries", ["original_demo_transaction_id"])
    op.create_index("ix_ledger_entries_serial_type", "ledger_entries", ["serial_key", "type"])
    op.create_index("ix_ledger_entries_type_entry_no", "ledger_entries", ["type", "entry_no"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("invoice_status", sa.String(length=16), nullable=False, server_default="Reserved"),
        sa.Column("delivery_status", sa.String(length=16), nullable=False, server_default="Pending"),
        sa.Column("customer_dealer", sa.String(length=255), nullable=False),
        sa.Column("customer_client", sa.String(length=255), nullable=False, server_default="N/A"),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("transaction_ids", sa.JSON(), nullable=False),
        sa.Column("entry_no", sa.Integer(), nullable=True),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("invoice_file_id", sa.String(length=128), nullable=True),
        sa.Column("invoice_uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_file_id", sa.String(length=128), nullable=True),
        sa.Column("delivery_uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signed_delivery_file_id", sa.String(length=128), nullable=True),
        sa.Column("signed_delivery_uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("invoice_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_remarks", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_orders_dual_status", "orders", ["invoice_status", "delivery_status"])

    op.create_table(
        "demos",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("demo_number", sa.String(length=64), nullable=False),
        sa.Column("demo_purpose", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Active"),
        sa.Column("customer_dealer", sa.String(length=255), nullable=False),
        sa.Column("customer_client", sa.String(length=255), nullable=False, server_default="N/A"),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("transaction_ids", sa.JSON(), nullable=False),
        sa.Column("returned_transaction_ids", sa.JSON(), nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_returned_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_remaining_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("partially_returned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expected_return_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_return_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("returned_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.UniqueConstraint("demo_number", name="uq_demos_demo_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_demos_status_created", "demos", ["status", "created_date"])

    op.create_table(
        "sequence_counters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=32), nullable=False),
        sa.Column("current_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("name", name="uq_sequence_counters_name"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("sequence_counters")
    op.drop_index("ix_demos_status_created", table_name="demos")
    op.drop_table("demos")
    op.drop_index("ix_orders_dual_status", table_name="orders")
    op.drop_table("orders")
    for name in (
        "ix_ledger_entries_type_entry_no",
        "ix_ledger_entries_serial_type",
        "ix_ledger_entries_original_demo_transaction_id",
        "ix_ledger_entries_occurred_at",
        "ix_ledger_entries_serial_key",
        "ix_ledger_entries_status",
        "ix_ledger_entries_type",
    ):
        op.drop_index(name, table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_assets_status", table_name="assets")
    op.drop_table("assets")
    for name in (
        "ix_session_tokens_user_active",
        "ix_session_tokens_expires_at",
        "ix_session_tokens_token_hash",
        "ix_session_tokens_user_id",
    ):
        op.drop_index(name, table_name="session_tokens")
    op.drop_table("session_tokens")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
