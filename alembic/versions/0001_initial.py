"""initial: inventory, reservations, payments, vouchers

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-28

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_company_id", "users", ["company_id"], unique=False)

    op.create_table(
        "buses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("bus_number", sa.String(length=30), nullable=False, unique=True),
        sa.Column("bus_type", sa.String(length=40), nullable=False, server_default="STANDARD"),
        sa.Column("total_seats", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_buses_company_id", "buses", ["company_id"], unique=False)

    op.create_table(
        "seats",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("bus_id", sa.String(length=36), nullable=False),
        sa.Column("seat_number", sa.String(length=10), nullable=False),
        sa.Column("seat_type", sa.String(length=12), nullable=False, server_default="STANDARD"),
        sa.Column("price_multiplier", sa.Numeric(3, 2), nullable=False, server_default="1.00"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("bus_id", "seat_number", name="uq_seat_bus_number"),
    )
    op.create_index("ix_seats_bus_id", "seats", ["bus_id"], unique=False)

    op.create_table(
        "trips",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("bus_id", sa.String(length=36), nullable=False),
        sa.Column("driver_user_id", sa.String(length=36), nullable=True),
        sa.Column("from_label", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("to_label", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("arrival_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_seats", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="SCHEDULED"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_trips_company_id", "trips", ["company_id"], unique=False)
    op.create_index("ix_trips_bus_id", "trips", ["bus_id"], unique=False)
    op.create_index("ix_trips_driver_user_id", "trips", ["driver_user_id"], unique=False)
    op.create_index("ix_trips_departure_time", "trips", ["departure_time"], unique=False)
    op.create_index("ix_trips_status", "trips", ["status"], unique=False)

    op.create_table(
        "reservations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_code", sa.String(length=20), nullable=False),
        sa.Column("trip_id", sa.String(length=36), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("passenger_name", sa.String(length=200), nullable=False),
        sa.Column("passenger_phone", sa.String(length=40), nullable=False),
        sa.Column("passenger_email", sa.String(length=320), nullable=True),
        sa.Column("seat_numbers", sa.JSON(), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("voucher_id", sa.String(length=36), nullable=True),
        sa.Column("payment_method", sa.String(length=20), nullable=False, server_default="VNPAY"),
        sa.Column("booking_status", sa.String(length=20), nullable=False, server_default="CONFIRMED"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("cancel_reason", sa.String(length=500), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_reservations_booking_code", "reservations", ["booking_code"], unique=True)
    op.create_index("ix_reservations_trip_id", "reservations", ["trip_id"], unique=False)
    op.create_index("ix_reservations_company_id", "reservations", ["company_id"], unique=False)
    op.create_index("ix_reservations_user_id", "reservations", ["user_id"], unique=False)
    op.create_index("ix_reservations_voucher_id", "reservations", ["voucher_id"], unique=False)
    op.create_index("ix_reservations_booking_status", "reservations", ["booking_status"], unique=False)
    op.create_index("ix_reservations_payment_status", "reservations", ["payment_status"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("payment_code", sa.String(length=30), nullable=False),
        sa.Column("reservation_id", sa.String(length=36), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("voucher_id", sa.String(length=36), nullable=True),
        sa.Column("payment_method", sa.String(length=20), nullable=False, server_default="VNPAY"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("transaction_id", sa.String(length=64), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payments_payment_code", "payments", ["payment_code"], unique=True)
    op.create_index("ix_payments_reservation_id", "payments", ["reservation_id"], unique=False)
    op.create_index("ix_payments_company_id", "payments", ["company_id"], unique=False)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)
    # at most one open attempt per reservation
    op.create_index(
        "uq_payments_one_pending", "payments", ["reservation_id"], unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "gateway_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("payment_id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("order_info", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("payment_url", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("result", sa.String(length=30), nullable=True),
        sa.Column("response_code", sa.String(length=10), nullable=True),
        sa.Column("transaction_no", sa.String(length=64), nullable=True),
        sa.Column("bank_code", sa.String(length=30), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signature_valid", sa.Boolean(), nullable=True),
        sa.Column("raw_params", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_gateway_transactions_payment_id", "gateway_transactions", ["payment_id"], unique=True)
    op.create_index("ix_gateway_transactions_order_id", "gateway_transactions", ["order_id"], unique=True)

    op.create_table(
        "vouchers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("company_id", sa.String(length=36), nullable=True),
        sa.Column("discount_type", sa.String(length=10), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("min_order_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_discount", sa.Numeric(12, 2), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("usage_per_user", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("code", "company_id", name="uq_voucher_code_company"),
        sa.CheckConstraint("usage_limit IS NULL OR used_count <= usage_limit", name="ck_voucher_used_within_limit"),
    )
    op.create_index("ix_vouchers_code", "vouchers", ["code"], unique=False)
    op.create_index("ix_vouchers_company_id", "vouchers", ["company_id"], unique=False)

    op.create_table(
        "voucher_usages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("voucher_id", sa.String(length=36), nullable=False),
        sa.Column("reservation_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("applied_discount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_voucher_usages_voucher_id", "voucher_usages", ["voucher_id"], unique=False)
    op.create_index("ix_voucher_usages_reservation_id", "voucher_usages", ["reservation_id"], unique=True)
    op.create_index("ix_voucher_usages_user_id", "voucher_usages", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_table("voucher_usages")
    op.drop_table("vouchers")
    op.drop_table("gateway_transactions")
    op.drop_index("uq_payments_one_pending", table_name="payments")
    op.drop_table("payments")
    op.drop_table("reservations")
    op.drop_table("trips")
    op.drop_table("seats")
    op.drop_table("buses")
    op.drop_table("users")
