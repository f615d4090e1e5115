"""Read-side queries over refunds: listings, statistics, escalations and history."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import RefundStatus
from ..core.exceptions import RefundNotFoundException
from ..models.refund import Refund
from ..repositories.factory import RepositoryFactory
from ..schemas.refund import (
    CustomerRefundResponse,
    RefundFilters,
    RefundListItem,
    RefundListResponse,
    RefundStats,
    RefundStatusHistoryResponse,
)
from .base import BaseService
from .refund_policy_engine import as_utc

ESCALATION_STATUSES = (RefundStatus.REQUESTED.value, RefundStatus.APPROVED.value)
_COUNTED_STATUSES = ("requested", "under_review", "approved", "processing")
_APPROVED_OR_LATER = {
    RefundStatus.APPROVED.value,
    RefundStatus.PROCESSING.value,
    RefundStatus.COMPLETED.value,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_month(now: datetime) -> datetime:
    now = as_utc(now)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def booking_reference(booking_id: str) -> str:
    return booking_id[:8].upper()


def compute_stats(rows: Iterable[Any], now: datetime) -> RefundStats:
    """
    Aggregate refund rows into dashboard statistics.

    Each row needs ``status``, ``eligible_amount``, ``approved_amount``,
    ``processed_amount`` and ``completed_at``.
    """
    counts = dict.fromkeys(_COUNTED_STATUSES, 0)
    month_start = start_of_month(now)
    zero = Decimal("0")

    total_requested = zero
    total_approved = zero
    total_processed = zero
    completed_this_month = 0
    refunded_this_month = zero

    for row in rows:
        status = row.status
        if status in counts:
            counts[status] += 1

        eligible = Decimal(row.eligible_amount or 0)
        if status != RefundStatus.REJECTED.value:
            total_requested += eligible

        if status in _APPROVED_OR_LATER:
            approved = row.approved_amount
            # zero approvals fall back to the eligible amount
            total_approved += Decimal(approved) if approved else eligible

        if status == RefundStatus.COMPLETED.value:
            processed = Decimal(row.processed_amount or 0)
            total_processed += processed
            if row.completed_at is not None and as_utc(row.completed_at) >= month_start:
                completed_this_month += 1
                refunded_this_month += processed

    return RefundStats(
        pending=counts["requested"],
        requested=counts["requested"],
        under_review=counts["under_review"],
        approved=counts["approved"],
        processing=counts["processing"],
        completed_this_month=completed_this_month,
        total_refunded_this_month=refunded_this_month,
        total_requested_amount=total_requested,
        total_approved_amount=total_approved,
        total_processed_amount=total_processed,
    )


def to_list_item(refund: Refund) -> RefundListItem:
    """Flatten a refund with the booking fields shown in staff listings."""
    item = RefundListItem.model_validate(refund)
    booking = refund.booking
    if booking is None:
        return item.model_copy(update={"booking_reference": booking_reference(refund.booking_id)})
    return item.model_copy(
        update={
            "guest_name": booking.guest_name,
            "guest_email": booking.guest_email,
            "room_name": booking.room_name,
            "check_in": booking.check_in,
            "check_out": booking.check_out,
            "booking_reference": booking_reference(refund.booking_id),
        }
    )


class RefundReportingService(BaseService):
    def __init__(self, db: Session, clock: Callable[[], datetime] = _utcnow) -> None:
        super().__init__(db)
        self.refund_repository = RepositoryFactory.create_refund_repository(db)
        self._clock = clock

    @BaseService.measure_operation("list_tenant_refunds")
    def get_refunds_by_tenant(
        self, tenant_id: str, filters: Optional[RefundFilters] = None
    ) -> RefundListResponse:
        filters = filters or RefundFilters()
        limit = min(
            filters.limit or settings.refund_list_default_limit,
            settings.refund_list_max_limit,
        )
        status = filters.status.value if isinstance(filters.status, RefundStatus) else filters.status
        refunds, total = self.refund_repository.list_for_tenant(
            tenant_id,
            status=status,
            date_from=filters.date_from,
            date_to=filters.date_to,
            limit=limit,
            offset=filters.offset,
        )
        return RefundListResponse(data=[to_list_item(refund) for refund in refunds], count=total)

    @BaseService.measure_operation("get_refund")
    def get_refund_by_id(self, refund_id: str, tenant_id: str) -> RefundListItem:
        refund = self.refund_repository.get_for_tenant(refund_id, tenant_id)
        if refund is None:
            raise RefundNotFoundException(refund_id, tenant_id)
        return to_list_item(refund)

    @BaseService.measure_operation("get_refund_history")
    def get_status_history(
        self, refund_id: str, tenant_id: str
    ) -> List[RefundStatusHistoryResponse]:
        """History entries oldest first; the refund must belong to the tenant."""
        if self.refund_repository.get_for_tenant(refund_id, tenant_id) is None:
            raise RefundNotFoundException(refund_id, tenant_id)
        entries = self.refund_repository.list_history(refund_id)
        return [RefundStatusHistoryResponse.model_validate(entry) for entry in entries]

    @BaseService.measure_operation("get_refund_stats")
    def get_refund_stats(self, tenant_id: str) -> RefundStats:
        rows = self.refund_repository.get_stats_rows(tenant_id)
        return compute_stats(rows, self._clock())

    @BaseService.measure_operation("find_stale_refunds")
    def find_stale_refunds(
        self, tenant_id: str, hours_threshold: Optional[int] = None
    ) -> List[Refund]:
        """Refunds still requested or approved after ``hours_threshold`` hours."""
        hours = settings.refund_escalation_hours if hours_threshold is None else hours_threshold
        cutoff = as_utc(self._clock()) - timedelta(hours=hours)
        return self.refund_repository.find_stale(
            tenant_id, statuses=ESCALATION_STATUSES, requested_before=cutoff
        )

    def get_pending_for_escalation(
        self, tenant_id: str, hours_threshold: Optional[int] = None
    ) -> List[RefundListItem]:
        return [to_list_item(r) for r in self.find_stale_refunds(tenant_id, hours_threshold)]

    def tenants_with_open_refunds(self) -> Sequence[str]:
        return self.refund_repository.tenant_ids_with_status(ESCALATION_STATUSES)

    # Customer portal

    @BaseService.measure_operation("list_customer_refunds")
    def get_refunds_by_customer(self, customer_id: str) -> List[CustomerRefundResponse]:
        refunds = self.refund_repository.list_for_customer(customer_id)
        return [CustomerRefundResponse.model_validate(refund) for refund in refunds]

    def get_refund_by_booking_for_customer(
        self, booking_id: str, customer_id: str
    ) -> Optional[CustomerRefundResponse]:
        refund = self.refund_repository.get_by_booking_for_customer(booking_id, customer_id)
        if refund is None:
            return None
        return CustomerRefundResponse.model_validate(refund)
