"""Schemas for the refund lifecycle: policy tiers, refund DTOs, stats and results."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from stayrefunds.core.enums import RefundPaymentMethod, RefundStatus
from stayrefunds.core.exceptions import PolicyDecodeError

from .base import Money, StandardizedModel, StrictRequestModel


class CancellationPolicyTier(BaseModel):
    """Minimum days before check-in mapped to a refund percentage."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    days_before: int
    refund_percentage: int = Field(ge=0, le=100)
    label: str = ""


NO_REFUND_TIER = CancellationPolicyTier(
    days_before=0, refund_percentage=0, label="No refund available"
)

DEFAULT_CANCELLATION_POLICIES: tuple[CancellationPolicyTier, ...] = (
    CancellationPolicyTier(
        days_before=7,
        refund_percentage=100,
        label="Free cancellation up to 7 days before",
    ),
)

_TIER_LIST_ADAPTER = TypeAdapter(list[CancellationPolicyTier])


def parse_policy_tiers(raw: Any) -> list[CancellationPolicyTier]:
    """
    Decode a stored tier list into validated tiers.

    ``None`` or an empty list yields the platform default policy.

    Raises:
        PolicyDecodeError: If the stored value is not a list of valid tiers
    """
    if raw is None or raw == []:
        return list(DEFAULT_CANCELLATION_POLICIES)
    try:
        return _TIER_LIST_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise PolicyDecodeError(
            "Malformed cancellation policy configuration",
            code="INVALID_CANCELLATION_POLICY",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def parse_policy_snapshot(raw: Any) -> Optional[CancellationPolicyTier]:
    """Decode the ``policy_applied`` snapshot stored on a refund row."""
    if raw is None:
        return None
    try:
        return CancellationPolicyTier.model_validate(raw)
    except ValidationError as exc:
        raise PolicyDecodeError(
            "Malformed policy snapshot on refund",
            code="INVALID_POLICY_SNAPSHOT",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


# ---------------------------------------------------------------- responses


class RefundResponse(StandardizedModel):
    id: str
    tenant_id: str
    booking_id: str
    customer_id: Optional[str] = None

    original_amount: Money
    eligible_amount: Money
    approved_amount: Optional[Money] = None
    processed_amount: Optional[Money] = None
    currency: str

    policy_applied: Optional[CancellationPolicyTier] = None
    days_before_checkin: Optional[int] = None
    refund_percentage: Optional[int] = None

    status: RefundStatus
    payment_method: Optional[str] = None
    original_payment_reference: Optional[str] = None
    refund_reference: Optional[str] = None

    rejection_reason: Optional[str] = None
    staff_notes: Optional[str] = None
    override_reason: Optional[str] = None
    failure_reason: Optional[str] = None

    requested_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @field_validator("policy_applied", mode="before")
    @classmethod
    def _decode_snapshot(cls, value: Any) -> Any:
        if isinstance(value, CancellationPolicyTier):
            return value
        return parse_policy_snapshot(value)


class RefundListItem(RefundResponse):
    """Refund row flattened with the booking fields shown in listings."""

    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    room_name: Optional[str] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    booking_reference: Optional[str] = None


class RefundListResponse(BaseModel):
    data: list[RefundListItem]
    count: int


class CustomerRefundResponse(StandardizedModel):
    """Customer-portal view; staff-only fields are left out."""

    id: str
    booking_id: str
    original_amount: Money
    eligible_amount: Money
    approved_amount: Optional[Money] = None
    processed_amount: Optional[Money] = None
    currency: str
    status: RefundStatus
    refund_percentage: Optional[int] = None
    days_before_checkin: Optional[int] = None
    requested_at: datetime
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class RefundStatusHistoryResponse(StandardizedModel):
    id: str
    refund_id: str
    previous_status: Optional[RefundStatus] = None
    new_status: RefundStatus
    changed_by: Optional[str] = None
    changed_by_name: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class RefundStats(BaseModel):
    pending: int = 0
    requested: int = 0
    under_review: int = 0
    approved: int = 0
    processing: int = 0
    completed_this_month: int = 0
    total_refunded_this_month: Money = Decimal("0")
    total_requested_amount: Money = Decimal("0")
    total_approved_amount: Money = Decimal("0")
    total_processed_amount: Money = Decimal("0")


class RefundCalculationResponse(BaseModel):
    booking_id: str
    currency: str
    original_amount: Money
    eligible_amount: Money
    refund_percentage: int
    days_before_check_in: int
    policy_applied: CancellationPolicyTier
    cancellation_date: datetime


class OperationResult(BaseModel):
    """Structured outcome returned across the workflow boundary."""

    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    data: Any = None


class SettlementResponse(BaseModel):
    success: bool
    message: str
    refund: Optional[RefundResponse] = None
    gateway_data: Optional[dict[str, Any]] = None
    error: Optional[str] = None


# ---------------------------------------------------------------- requests


class RefundFilters(StrictRequestModel):
    status: Optional[RefundStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class RefundBookingRequest(StrictRequestModel):
    booking_id: str = Field(min_length=1)


class ApproveRefundRequest(StrictRequestModel):
    approved_amount: Decimal = Field(ge=0, decimal_places=2)
    override_reason: Optional[str] = None
    notes: Optional[str] = None


class RejectRefundRequest(StrictRequestModel):
    rejection_reason: str


class ProcessRefundRequest(StrictRequestModel):
    method: Optional[RefundPaymentMethod] = None


class CompleteRefundRequest(StrictRequestModel):
    processed_amount: Decimal = Field(ge=0, decimal_places=2)
    refund_reference: Optional[str] = None


class FailRefundRequest(StrictRequestModel):
    failure_reason: str


class StaffNotesRequest(StrictRequestModel):
    staff_notes: str
