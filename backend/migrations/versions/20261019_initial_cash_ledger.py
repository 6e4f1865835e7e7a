"""Initial cash ledger: facilities, register sessions, cash movements, payment sources

Revision ID: 20261019_initial_cash_ledger
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_cash_ledger"
down_revision = None
branch_labels = None
depends_on = None


METHOD_TOTAL_COLUMNS = [
    "total_cash_cents",
    "total_card_cents",
    "total_transfer_cents",
    "total_credit_card_cents",
    "total_debit_card_cents",
    "total_mobile_wallet_cents",
    "total_other_cents",
]


def upgrade():
    op.create_table(
        "facilities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("facilities", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_facilities_is_active"), ["is_active"], unique=False)

    # Upstream payment sources (read-only for the ledger)
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("client_name", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("bookings", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_bookings_facility_id"), ["facility_id"], unique=False)

    op.create_table(
        "booking_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("booking_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("payment_type", sa.String(length=16), nullable=False),
        sa.Column("registered_by", sa.Integer(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("booking_payments", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_booking_payments_booking_id"), ["booking_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_booking_payments_paid_at"), ["paid_at"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(length=30), nullable=False),
        sa.Column("booking_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"]),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_orders_facility_id"), ["facility_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_orders_booking_id"), ["booking_id"], unique=False)

    op.create_table(
        "order_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column("registered_by", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_payments", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_order_payments_order_id"), ["order_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_order_payments_created_at"), ["created_at"], unique=False)

    # Register sessions
    op.create_table(
        "register_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("operator_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("opening_cash_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("counted_cash_cents", sa.Integer(), nullable=True),
        sa.Column("variance_cents", sa.Integer(), nullable=True),
        *[sa.Column(name, sa.Integer(), nullable=False, server_default="0") for name in METHOD_TOTAL_COLUMNS],
        sa.Column("total_sales_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_expenses_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_withdrawals_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_movements", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("totals_computed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opening_notes", sa.Text(), nullable=True),
        sa.Column("closing_notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("register_sessions", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_register_sessions_facility_id"), ["facility_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_register_sessions_operator_id"), ["operator_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_register_sessions_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_register_sessions_opened_at"), ["opened_at"], unique=False)
        batch_op.create_index("ix_register_sessions_facility_opened", ["facility_id", "opened_at"], unique=False)

    # At most one OPEN session per facility
    op.create_index(
        "uq_register_sessions_facility_open",
        "register_sessions",
        ["facility_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    # Cash movements (append-only)
    op.create_table(
        "cash_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("register_session_id", sa.Integer(), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(length=32), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("booking_id", sa.Integer(), nullable=True),
        sa.Column("expense_category", sa.String(length=64), nullable=True),
        sa.Column("operator_id", sa.Integer(), nullable=True),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="live"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["register_session_id"], ["register_sessions.id"]),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_movements", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_cash_movements_register_session_id"), ["register_session_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_cash_movements_facility_id"), ["facility_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_cash_movements_movement_type"), ["movement_type"], unique=False)
        batch_op.create_index(batch_op.f("ix_cash_movements_payment_method"), ["payment_method"], unique=False)
        batch_op.create_index(batch_op.f("ix_cash_movements_order_id"), ["order_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_cash_movements_booking_id"), ["booking_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_cash_movements_operator_id"), ["operator_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_cash_movements_registered_at"), ["registered_at"], unique=False)
        batch_op.create_index(
            "ix_cash_movements_session_registered",
            ["register_session_id", "registered_at"],
            unique=False,
        )


def downgrade():
    op.drop_table("cash_movements")
    op.drop_index("uq_register_sessions_facility_open", table_name="register_sessions")
    op.drop_table("register_sessions")
    op.drop_table("order_payments")
    op.drop_table("orders")
    op.drop_table("booking_payments")
    op.drop_table("bookings")
    op.drop_table("facilities")
