"""
Refund models.

``Refund`` tracks a single refund request from creation to a terminal
state. ``RefundStatusHistory`` is the append-only audit trail of every
status change; rows are never updated or deleted.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from stayrefunds.core.enums import RefundPaymentMethod, RefundStatus
from stayrefunds.core.ulid_helper import generate_ulid
from stayrefunds.database import Base

if TYPE_CHECKING:
    from stayrefunds.models.booking import Booking


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RefundStatus)
_METHOD_VALUES = ", ".join(f"'{m.value}'" for m in RefundPaymentMethod)


class Refund(Base):
    """Refund request raised from a booking cancellation."""

    __tablename__ = "refunds"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tenant_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    customer_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    # Amounts, all in the booking's currency
    original_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    eligible_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    processed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZAR")

    # Policy snapshot at time of request
    policy_applied: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )
    days_before_checkin: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    refund_percentage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=RefundStatus.REQUESTED.value
    )

    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    original_payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refund_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    staff_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    override_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(64))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[str]] = mapped_column(String(64))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[Optional[str]] = mapped_column(String(64))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_by: Mapped[Optional[str]] = mapped_column(String(64))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_now_utc
    )

    booking: Mapped["Booking"] = relationship("Booking", lazy="joined")

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="refunds_valid_status"),
        CheckConstraint(
            f"payment_method IS NULL OR payment_method IN ({_METHOD_VALUES})",
            name="refunds_valid_payment_method",
        ),
        Index("idx_refunds_tenant_status", "tenant_id", "status"),
        Index("idx_refunds_tenant_requested_at", "tenant_id", "requested_at"),
        Index("idx_refunds_customer_id", "customer_id"),
    )

    @property
    def settlement_amount(self) -> Decimal:
        """Amount to move: the reviewer-approved amount, else the policy amount."""
        if self.approved_amount is not None:
            return Decimal(self.approved_amount)
        return Decimal(self.eligible_amount)

    def __repr__(self) -> str:
        return f"<Refund(id={self.id}, booking={self.booking_id}, status={self.status})>"


class RefundStatusHistory(Base):
    """Append-only audit trail of refund status changes."""

    __tablename__ = "refund_status_history"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    refund_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("refunds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    previous_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    changed_by_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )

    def __repr__(self) -> str:
        return (
            f"<RefundStatusHistory(refund={self.refund_id}, "
            f"{self.previous_status} -> {self.new_status})>"
        )
