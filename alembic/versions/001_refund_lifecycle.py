# alembic/versions/001_refund_lifecycle.py
"""Refund lifecycle - tenants, bookings, refunds, refund status history

Revision ID: 001_refund_lifecycle
Revises:
Create Date: 2026-10-16 00:00:00.000000

Creates the minimal tenant and booking tables the refund engine reads, the
refunds table (one refund per booking) and the append-only status history.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_refund_lifecycle"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

REFUND_STATUSES = (
    "requested",
    "under_review",
    "approved",
    "rejected",
    "processing",
    "completed",
    "failed",
)
REFUND_METHODS = ("paystack", "eft", "manual", "paypal")


def _json_type() -> sa.types.TypeEngine:
    return JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def _in_list(values: Sequence[str]) -> str:
    return ", ".join(f"'{value}'" for value in values)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("business_name", sa.String(255), nullable=False),
        sa.Column("cancellation_policies", _json_type(), nullable=True),
        sa.Column("paystack_mode", sa.String(10), nullable=False, server_default="test"),
        sa.Column("paystack_test_secret_key", sa.String(255), nullable=True),
        sa.Column("paystack_live_secret_key", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(26),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("customer_id", sa.String(26), nullable=True),
        sa.Column("guest_name", sa.String(255), nullable=True),
        sa.Column("guest_email", sa.String(255), nullable=True),
        sa.Column("room_name", sa.String(255), nullable=True),
        sa.Column("check_in", sa.Date(), nullable=False),
        sa.Column("check_out", sa.Date(), nullable=True),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(30), nullable=True),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_id", sa.String(26), nullable=True),
        sa.Column("refund_status", sa.String(30), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bookings_tenant_id", "bookings", ["tenant_id"])
    op.create_index("idx_bookings_refund_status", "bookings", ["refund_status"])

    op.create_table(
        "refunds",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(26),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "booking_id",
            sa.String(26),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("customer_id", sa.String(26), nullable=True),
        sa.Column("original_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("eligible_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("approved_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("processed_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="ZAR"),
        sa.Column("policy_applied", _json_type(), nullable=True),
        sa.Column("days_before_checkin", sa.Integer(), nullable=True),
        sa.Column("refund_percentage", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="requested"),
        sa.Column("payment_method", sa.String(30), nullable=True),
        sa.Column("original_payment_reference", sa.String(100), nullable=True),
        sa.Column("refund_reference", sa.String(100), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("staff_notes", sa.Text(), nullable=True),
        sa.Column("override_reason", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column(
            "requested_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(64), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.String(64), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            f"status IN ({_in_list(REFUND_STATUSES)})", name="refunds_valid_status"
        ),
        sa.CheckConstraint(
            f"payment_method IS NULL OR payment_method IN ({_in_list(REFUND_METHODS)})",
            name="refunds_valid_payment_method",
        ),
    )
    op.create_index("idx_refunds_tenant_status", "refunds", ["tenant_id", "status"])
    op.create_index("idx_refunds_tenant_requested_at", "refunds", ["tenant_id", "requested_at"])
    op.create_index("idx_refunds_customer_id", "refunds", ["customer_id"])

    op.create_table(
        "refund_status_history",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "refund_id",
            sa.String(26),
            sa.ForeignKey("refunds.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("previous_status", sa.String(30), nullable=True),
        sa.Column("new_status", sa.String(30), nullable=False),
        sa.Column("changed_by", sa.String(64), nullable=True),
        sa.Column("changed_by_name", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_refund_status_history_refund_id", "refund_status_history", ["refund_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_refund_status_history_refund_id", table_name="refund_status_history")
    op.drop_table("refund_status_history")
    op.drop_index("idx_refunds_customer_id", table_name="refunds")
    op.drop_index("idx_refunds_tenant_requested_at", table_name="refunds")
    op.drop_index("idx_refunds_tenant_status", table_name="refunds")
    op.drop_table("refunds")
    op.drop_index("idx_bookings_refund_status", table_name="bookings")
    op.drop_index("ix_bookings_tenant_id", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("tenants")
