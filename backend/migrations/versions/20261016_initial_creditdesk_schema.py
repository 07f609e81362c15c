"""Initial schema: businesses, membership, customer ledger and approval roles

Revision ID: 20261016_initial
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261016_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "businesses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("business_type", sa.String(64), nullable=True),
        sa.Column("owner_user_id", sa.String(128), nullable=False),
        sa.Column("business_code", sa.String(6), nullable=False),
        sa.Column("system_code", sa.String(6), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="TZS"),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("credit_approval_threshold_cents", sa.BigInteger(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_code", name="uq_businesses_business_code"),
        sa.UniqueConstraint("system_code", name="uq_businesses_system_code"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("businesses", schema=None) as batch_op:
        batch_op.create_index("ix_businesses_owner_user_id", ["owner_user_id"], unique=False)
        batch_op.create_index("ix_businesses_business_code", ["business_code"], unique=False)
        batch_op.create_index("ix_businesses_is_active", ["is_active"], unique=False)

    op.create_table(
        "business_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(128), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("approved_by", sa.String(128), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "user_id", name="uq_business_members_business_user"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("business_members", schema=None) as batch_op:
        batch_op.create_index("ix_business_members_business_id", ["business_id"], unique=False)
        batch_op.create_index("ix_business_members_user_id", ["user_id"], unique=False)

    op.create_table(
        "pending_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(128), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("requested_role", sa.String(32), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "user_id", name="uq_pending_members_business_user"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("pending_members", schema=None) as batch_op:
        batch_op.create_index("ix_pending_members_business_id", ["business_id"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("credit_limit_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("credit_used_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_spent_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_business_id", ["business_id"], unique=False)
        batch_op.create_index("ix_customers_is_active", ["is_active"], unique=False)
        batch_op.create_index("ix_customers_business_active", ["business_id", "is_active"], unique=False)

    op.create_table(
        "customer_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("balance_after_cents", sa.BigInteger(), nullable=False),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.Column("approved_by", sa.String(128), nullable=True),
        sa.Column("secondary_approved_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", "idempotency_key", name="uq_customer_txns_idempotency"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("customer_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_customer_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_customer_transactions_business_id", ["business_id"], unique=False)
        batch_op.create_index("ix_customer_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_customer_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_customer_txns_customer_created", ["customer_id", "created_at"], unique=False)

    op.create_table(
        "approval_roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("can_approve_orders", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("can_approve_credit", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("can_approve_transfers", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_approval_amount_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("requires_secondary_approval", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("secondary_approval_amount_cents", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "name", name="uq_approval_roles_business_name"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("approval_roles", schema=None) as batch_op:
        batch_op.create_index("ix_approval_roles_business_id", ["business_id"], unique=False)
        batch_op.create_index("ix_approval_roles_is_active", ["is_active"], unique=False)

    op.create_table(
        "approval_users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("user_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("user_email", sa.String(255), nullable=False, server_default=""),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("assigned_by", sa.String(128), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["approval_roles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("approval_users", schema=None) as batch_op:
        batch_op.create_index("ix_approval_users_business_id", ["business_id"], unique=False)
        batch_op.create_index("ix_approval_users_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_approval_users_role_id", ["role_id"], unique=False)

    # One active binding per (business, user)
    op.create_index(
        "uq_approval_users_active_user",
        "approval_users",
        ["business_id", "user_id"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(128), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("security_events", schema=None) as batch_op:
        batch_op.create_index("ix_security_events_business_id", ["business_id"], unique=False)
        batch_op.create_index("ix_security_events_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_security_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_security_events_success", ["success"], unique=False)
        batch_op.create_index("ix_security_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_security_events_user_type", ["user_id", "event_type"], unique=False)
        batch_op.create_index("ix_security_events_business_occurred", ["business_id", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("security_events")
    op.drop_index("uq_approval_users_active_user", table_name="approval_users")
    op.drop_table("approval_users")
    op.drop_table("approval_roles")
    op.drop_table("customer_transactions")
    op.drop_table("customers")
    op.drop_table("pending_members")
    op.drop_table("business_members")
    op.drop_table("businesses")
