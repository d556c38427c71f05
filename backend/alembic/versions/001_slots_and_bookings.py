"""Initial schema: slots and bookings with capacity constraints and indexes.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("gender", sa.String(10), nullable=False),
        sa.Column("description", sa.String(200), nullable=True),
        sa.Column("max_capacity", sa.Integer(), nullable=False, server_default=sa.text("40")),
        sa.Column("current_bookings", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_raising_court", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("raising_court_capacity", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("raising_court_bookings", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        # The counters only move through conditional UPDATEs; these are the backstop
        sa.CheckConstraint("max_capacity > 0", name="check_slot_capacity_positive"),
        sa.CheckConstraint("current_bookings >= 0", name="check_slot_bookings_non_negative"),
        sa.CheckConstraint("current_bookings <= max_capacity", name="check_slot_bookings_lte_capacity"),
        sa.CheckConstraint("raising_court_capacity >= 0", name="check_rc_capacity_non_negative"),
        sa.CheckConstraint("raising_court_bookings >= 0", name="check_rc_bookings_non_negative"),
        sa.CheckConstraint(
            "raising_court_bookings <= raising_court_capacity",
            name="check_rc_bookings_lte_capacity",
        ),
        sa.CheckConstraint("end_time > start_time", name="check_slot_time_order"),
        sa.CheckConstraint("gender IN ('male', 'female')", name="check_slot_gender"),
        sa.UniqueConstraint("date", "start_time", "end_time", "gender", name="uq_slot_date_time_gender"),
    )
    op.create_index("ix_slots_id", "slots", ["id"])
    # Members list a day's slots in start order; admins filter by day and gender
    op.create_index("ix_slots_date_start", "slots", ["date", "start_time"])
    op.create_index("ix_slots_date_gender", "slots", ["date", "gender"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slots.id"), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'confirmed'")),
        sa.Column("resource", sa.String(20), nullable=False, server_default=sa.text("'primary'")),
        sa.Column("notes", sa.String(200), nullable=True),
        sa.Column("checked_in", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(200), nullable=True),
        sa.Column("qr_code", sa.String(512), nullable=True, unique=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('confirmed', 'cancelled', 'completed', 'no-show')",
            name="check_booking_status",
        ),
        sa.CheckConstraint("resource IN ('primary', 'secondary')", name="check_booking_resource"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_slot_id", "bookings", ["slot_id"])
    op.create_index("ix_bookings_user_date", "bookings", ["user_id", "booking_date"])
    op.create_index("ix_bookings_slot_date", "bookings", ["slot_id", "booking_date"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    # One confirmed booking per member, slot, date and resource.
    # Cancelled and finished rows stay in the ledger without blocking a rebook.
    op.create_index(
        "uq_confirmed_booking",
        "bookings",
        ["user_id", "slot_id", "booking_date", "resource"],
        unique=True,
        postgresql_where=sa.text("status = 'confirmed'"),
    )


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("slots")
