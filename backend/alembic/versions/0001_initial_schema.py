"""Initial storefront schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _store_fk(ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(
        "store_id",
        sa.Uuid(as_uuid=True),
        sa.ForeignKey("stores.id", ondelete=ondelete),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "stores",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.Uuid(as_uuid=True)),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("default_timezone", sa.String(length=64), nullable=False),
        sa.Column("default_currency", sa.String(length=8), nullable=False),
        sa.Column("credit_exchange_rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("use_customer_credit", sa.Boolean(), nullable=False),
        sa.Column("uses_platform_gateway", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("phone", sa.String(length=32)),
        *_timestamps(),
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("fee_rate", sa.Numeric(8, 4), nullable=False),
        sa.Column("fee_additional", sa.Numeric(12, 2), nullable=False),
        sa.Column("clear_days", sa.Integer(), nullable=False),
        sa.Column("pay_url", sa.String(length=512)),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "rsvp_settings",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "store_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("stores.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("accept_reservation", sa.Boolean(), nullable=False),
        sa.Column("single_service_mode", sa.Boolean(), nullable=False),
        sa.Column("default_duration_minutes", sa.Integer()),
        sa.Column("min_prepaid_percentage", sa.Integer(), nullable=False),
        sa.Column("no_need_to_confirm", sa.Boolean(), nullable=False),
        sa.Column("can_cancel", sa.Boolean(), nullable=False),
        sa.Column("cancel_hours", sa.Integer(), nullable=False),
        sa.Column("can_reserve_before_hours", sa.Integer()),
        sa.Column("can_reserve_after_hours", sa.Integer()),
        *_timestamps(),
    )

    op.create_table(
        "rsvp_blacklist",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "customer_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reason", sa.String(length=255)),
        *_timestamps(),
        sa.UniqueConstraint(
            "store_id", "customer_id", name="uq_rsvp_blacklist_customer"
        ),
    )

    op.create_table(
        "store_facilities",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("default_duration_minutes", sa.Integer()),
        sa.Column("default_cost", sa.Numeric(12, 2)),
        sa.Column("business_hours", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "service_staff",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "customer_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
        ),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("default_cost", sa.Numeric(12, 2)),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "service_staff_facility_schedules",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "service_staff_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("service_staff.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "facility_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("store_facilities.id", ondelete="CASCADE"),
        ),
        sa.Column("business_hours", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True)),
        sa.Column("effective_to", sa.DateTime(timezone=True)),
        *_timestamps(),
    )

    order_type_enum = sa.Enum(
        "STANDARD", "RSVP", "CREDIT_RECHARGE", name="ordertype"
    )
    order_status_enum = sa.Enum(
        "PENDING", "PROCESSING", "COMPLETED", "VOIDED", name="orderstatus"
    )
    payment_status_enum = sa.Enum(
        "PENDING", "PAID", "REFUNDED", name="paymentstatus"
    )

    op.create_table(
        "store_orders",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "customer_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
        ),
        sa.Column("order_type", order_type_enum, nullable=False),
        sa.Column("order_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column(
            "payment_method_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("payment_methods.id", ondelete="SET NULL"),
        ),
        sa.Column("payment_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("order_status", order_status_enum, nullable=False),
        sa.Column("payment_status", payment_status_enum, nullable=False),
        sa.Column("note", sa.String(length=1024)),
        *_timestamps(),
    )

    rsvp_status_enum = sa.Enum(
        "PENDING",
        "READY_TO_CONFIRM",
        "READY",
        "CHECKED_IN",
        "COMPLETED",
        "CANCELLED",
        "NO_SHOW",
        name="rsvpstatus",
    )

    op.create_table(
        "reservations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "customer_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "facility_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("store_facilities.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "service_staff_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("service_staff.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("store_orders.id", ondelete="SET NULL"),
        ),
        sa.Column("num_of_adult", sa.Integer(), nullable=False),
        sa.Column("num_of_child", sa.Integer(), nullable=False),
        sa.Column("rsvp_time", sa.BigInteger(), nullable=False),
        sa.Column("arrive_time", sa.BigInteger()),
        sa.Column("message", sa.String(length=1024)),
        sa.Column("facility_cost", sa.Numeric(12, 2)),
        sa.Column("service_staff_cost", sa.Numeric(12, 2)),
        sa.Column("pricing_rule_id", sa.Uuid(as_uuid=True)),
        sa.Column("status", rsvp_status_enum, nullable=False),
        sa.Column("already_paid", sa.Boolean(), nullable=False),
        sa.Column("confirmed_by_store", sa.Boolean(), nullable=False),
        sa.Column("confirmed_by_customer", sa.Boolean(), nullable=False),
        sa.Column("check_in_code", sa.String(length=16)),
        sa.Column("checked_in_at", sa.DateTime(timezone=True)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("name", sa.String(length=255)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("phone", sa.String(length=32)),
        sa.Column("created_by", sa.Uuid(as_uuid=True)),
        *_timestamps(),
        sa.CheckConstraint("num_of_adult >= 1", name="ck_reservations_adults"),
        sa.CheckConstraint("num_of_child >= 0", name="ck_reservations_children"),
    )
    op.create_index(
        "ix_reservations_store_time", "reservations", ["store_id", "rsvp_time"]
    )
    op.create_index(
        "ux_reservations_store_check_in_code",
        "reservations",
        ["store_id", "check_in_code"],
        unique=True,
        sqlite_where=sa.text("check_in_code IS NOT NULL"),
        postgresql_where=sa.text("check_in_code IS NOT NULL"),
    )

    op.create_table(
        "store_ledger",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "order_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("store_orders.id", ondelete="SET NULL"),
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("type", sa.Integer(), nullable=False),
        sa.Column("balance", sa.Numeric(14, 2), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("note", sa.String(length=1024)),
        sa.Column("availability", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("store_id", "sequence", name="uq_store_ledger_sequence"),
    )
    op.create_index("ix_store_ledger_store_id", "store_ledger", ["store_id"])
    op.create_index(
        "ux_store_ledger_order_type",
        "store_ledger",
        ["order_id", "type"],
        unique=True,
        sqlite_where=sa.text("order_id IS NOT NULL"),
        postgresql_where=sa.text("order_id IS NOT NULL"),
    )

    op.create_table(
        "customer_credits",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "customer_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("point", sa.Numeric(14, 2), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "store_id", "customer_id", name="uq_customer_credits_owner"
        ),
    )

    credit_type_enum = sa.Enum(
        "TOPUP",
        "BONUS",
        "HOLD",
        "SPEND",
        "REFUND",
        "ADJUSTMENT",
        name="customercreditledgertype",
    )

    op.create_table(
        "customer_credit_ledger",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column(
            "customer_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance", sa.Numeric(14, 2), nullable=False),
        sa.Column("type", credit_type_enum, nullable=False),
        sa.Column("reference_id", sa.String(length=64)),
        sa.Column("note", sa.String(length=255)),
        sa.Column("creator_id", sa.Uuid(as_uuid=True)),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ux_customer_credit_ledger_reference_type",
        "customer_credit_ledger",
        ["reference_id", "type"],
        unique=True,
        sqlite_where=sa.text("reference_id IS NOT NULL"),
        postgresql_where=sa.text("reference_id IS NOT NULL"),
    )

    op.create_table(
        "credit_bonus_rules",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _store_fk(),
        sa.Column("threshold", sa.Numeric(12, 2), nullable=False),
        sa.Column("bonus", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("credit_bonus_rules")

    op.drop_index(
        "ux_customer_credit_ledger_reference_type",
        table_name="customer_credit_ledger",
    )
    op.drop_table("customer_credit_ledger")
    sa.Enum(name="customercreditledgertype").drop(op.get_bind(), checkfirst=True)
    op.drop_table("customer_credits")

    op.drop_index("ux_store_ledger_order_type", table_name="store_ledger")
    op.drop_index("ix_store_ledger_store_id", table_name="store_ledger")
    op.drop_table("store_ledger")

    op.drop_index("ux_reservations_store_check_in_code", table_name="reservations")
    op.drop_index("ix_reservations_store_time", table_name="reservations")
    op.drop_table("reservations")
    sa.Enum(name="rsvpstatus").drop(op.get_bind(), checkfirst=True)

    op.drop_table("store_orders")
    sa.Enum(name="paymentstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="orderstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="ordertype").drop(op.get_bind(), checkfirst=True)

    op.drop_table("service_staff_facility_schedules")
    op.drop_table("service_staff")
    op.drop_table("store_facilities")
    op.drop_table("rsvp_blacklist")
    op.drop_table("rsvp_settings")
    op.drop_table("payment_methods")
    op.drop_table("customers")
    op.drop_table("stores")
