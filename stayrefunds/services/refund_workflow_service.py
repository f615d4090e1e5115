"""
Refund workflow service.

Drives a refund through its seven states. Every transition is checked in the
same order: the refund must exist for the tenant, its current status must
permit the operation, then the inputs are validated. Only then is anything
written, and the write is a compare-and-swap on the status that was read, so
a refund moved by someone else in the meantime is rejected instead of being
overwritten. The status update, the history row and the booking mirror commit
together.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingPaymentStatus, BookingStatus, RefundPaymentMethod, RefundStatus
from ..core.exceptions import (
    BookingNotFoundException,
    DomainException,
    DuplicateRecordException,
    InvalidRefundTransitionException,
    RefundAlreadyExistsException,
    RefundNotFoundException,
    RepositoryException,
    ValidationException,
)
from ..models.booking import Booking
from ..models.refund import Refund
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.refund import OperationResult, RefundCalculationResponse, RefundResponse
from .base import BaseService
from .refund_policy_engine import RefundPolicyEngine, quantize_money

logger = logging.getLogger(__name__)

AUTO_CREATED_NOTE = "Refund request auto-created from booking cancellation"

_VALID_PAYMENT_METHODS = {method.value for method in RefundPaymentMethod}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BookingSnapshot:
    """Booking fields the workflow needs, normalized once at the boundary."""

    id: str
    tenant_id: str
    customer_id: Optional[str]
    total_amount: Decimal
    currency: str
    check_in: date
    cancelled_at: Optional[datetime]
    payment_method: Optional[str]
    payment_reference: Optional[str]

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingSnapshot":
        payment_method = booking.payment_method
        if payment_method is not None and payment_method not in _VALID_PAYMENT_METHODS:
            logger.warning(
                "Unrecognized booking payment method; refund will be settled manually",
                extra={"booking_id": booking.id, "payment_method": payment_method},
            )
            payment_method = None

        total_amount = Decimal(str(booking.total_amount or 0))
        if total_amount < 0:
            raise ValidationException(
                "Booking amount cannot be negative",
                code="INVALID_BOOKING_AMOUNT",
                details={"booking_id": booking.id, "total_amount": str(total_amount)},
            )

        return cls(
            id=booking.id,
            tenant_id=booking.tenant_id,
            customer_id=booking.customer_id or None,
            total_amount=total_amount,
            currency=(booking.currency or settings.default_currency).upper(),
            check_in=booking.check_in,
            cancelled_at=booking.cancelled_at,
            payment_method=payment_method,
            payment_reference=booking.payment_reference or None,
        )


class RefundWorkflowService(BaseService):
    """State machine for refunds, from creation through settlement outcome."""

    def __init__(
        self,
        db: Session,
        policy_engine: Optional[RefundPolicyEngine] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(db)
        self.refund_repository = RepositoryFactory.create_refund_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.tenant_repository = RepositoryFactory.create_tenant_repository(db)
        self.policy_engine = policy_engine or RefundPolicyEngine()
        self._clock = clock

    # ----------------------------------------------------------------- create

    @BaseService.measure_operation("create_refund_from_cancellation")
    def create_refund_from_cancellation(
        self, booking_id: str, tenant_id: str, *, require_cancelled: bool = False
    ) -> Refund:
        """
        Open a refund for a cancelled booking, priced by the tenant's policy.

        Cancellation hooks call this after cancelling, so the booking status is
        only enforced when ``require_cancelled`` is set (staff-initiated requests).

        Raises:
            BookingNotFoundException: If the booking is not the tenant's
            ValidationException: If ``require_cancelled`` and the booking is active
            ValidationException: If the booking amount is negative
            RefundAlreadyExistsException: If the booking already has a refund
            TenantNotFoundException: If the tenant does not exist
        """
        booking = self.booking_repository.get_for_tenant(booking_id, tenant_id)
        if booking is None:
            raise BookingNotFoundException(booking_id, tenant_id)
        if require_cancelled and booking.status != BookingStatus.CANCELLED.value:
            raise ValidationException(
                "Can only create refund for cancelled bookings",
                code="BOOKING_NOT_CANCELLED",
                details={"booking_id": booking_id, "status": booking.status},
            )

        existing = self.refund_repository.get_by_booking(booking_id)
        if existing is not None:
            raise RefundAlreadyExistsException(booking_id, existing.id)

        snapshot = BookingSnapshot.from_booking(booking)
        policy_tiers = self.tenant_repository.get_cancellation_policies(tenant_id)
        now = self._clock()
        calculation = self.policy_engine.evaluate_cancellation(
            total_amount=snapshot.total_amount,
            check_in=snapshot.check_in,
            cancelled_at=snapshot.cancelled_at,
            policy_tiers=policy_tiers,
            now=now,
        )

        with self.transaction():
            try:
                refund = self.refund_repository.create(
                    tenant_id=tenant_id,
                    booking_id=snapshot.id,
                    customer_id=snapshot.customer_id,
                    original_amount=calculation.original_amount,
                    eligible_amount=calculation.eligible_amount,
                    currency=snapshot.currency,
                    policy_applied=calculation.policy_applied.model_dump(),
                    days_before_checkin=calculation.days_before_check_in,
                    refund_percentage=calculation.refund_percentage,
                    status=RefundStatus.REQUESTED.value,
                    payment_method=snapshot.payment_method,
                    original_payment_reference=snapshot.payment_reference,
                    requested_at=now,
                )
            except DuplicateRecordException as exc:
                raise RefundAlreadyExistsException(booking_id) from exc

            self.refund_repository.append_history(
                refund_id=refund.id,
                previous_status=None,
                new_status=RefundStatus.REQUESTED.value,
                changed_by=None,
                changed_by_name=None,
                notes=AUTO_CREATED_NOTE,
            )
            self.booking_repository.mirror_refund_status(
                snapshot.id,
                refund_status=RefundStatus.REQUESTED.value,
                refund_id=refund.id,
            )

        prometheus_metrics.record_refund_transition(None, RefundStatus.REQUESTED.value)
        self.logger.info(
            "Refund created from cancellation",
            extra={
                "refund_id": refund.id,
                "booking_id": booking_id,
                "tenant_id": tenant_id,
                "eligible_amount": str(calculation.eligible_amount),
            },
        )
        return refund

    # ------------------------------------------------------------ transitions

    @BaseService.measure_operation("mark_refund_under_review")
    def mark_under_review(
        self, refund_id: str, tenant_id: str, actor_id: str, actor_name: Optional[str]
    ) -> Refund:
        refund = self.get_refund_or_raise(refund_id, tenant_id)
        self.ensure_status(refund, "review", {RefundStatus.REQUESTED})

        now = self._clock()
        return self._apply_transition(
            refund,
            operation="review",
            to_status=RefundStatus.UNDER_REVIEW,
            values={"reviewed_at": now, "reviewed_by": actor_id},
            actor_id=actor_id,
            actor_name=actor_name,
        )

    @BaseService.measure_operation("approve_refund")
    def approve(
        self,
        refund_id: str,
        tenant_id: str,
        actor_id: str,
        actor_name: Optional[str],
        approved_amount: Decimal,
        override_reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Refund:
        """
        Approve a refund for the given amount.

        An amount different from the policy-eligible one needs an override
        reason. The amount can never exceed what the guest paid.
        """
        refund = self.get_refund_or_raise(refund_id, tenant_id)
        self.ensure_status(refund, "approve", {RefundStatus.REQUESTED, RefundStatus.UNDER_REVIEW})

        amount = self._validate_amount(approved_amount, refund, field="approved_amount")
        override = (override_reason or "").strip() or None
        if amount != quantize_money(refund.eligible_amount) and override is None:
            raise ValidationException(
                "Override reason required when amount differs from eligible amount",
                code="OVERRIDE_REASON_REQUIRED",
                details={
                    "approved_amount": str(amount),
                    "eligible_amount": str(refund.eligible_amount),
                },
            )

        now = self._clock()
        values: dict[str, Any] = {
            "approved_amount": amount,
            "override_reason": override,
            "approved_at": now,
            "approved_by": actor_id,
        }
        if notes and notes.strip():
            values["staff_notes"] = notes.strip()

        history_note = f"Approved for {amount}"
        if override:
            history_note += f" (Override: {override})"

        return self._apply_transition(
            refund,
            operation="approve",
            to_status=RefundStatus.APPROVED,
            values=values,
            actor_id=actor_id,
            actor_name=actor_name,
            notes=history_note,
        )

    @BaseService.measure_operation("reject_refund")
    def reject(
        self,
        refund_id: str,
        tenant_id: str,
        actor_id: str,
        actor_name: Optional[str],
        rejection_reason: str,
    ) -> Refund:
        refund = self.get_refund_or_raise(refund_id, tenant_id)
        self.ensure_status(refund, "reject", {RefundStatus.REQUESTED, RefundStatus.UNDER_REVIEW})

        reason = self._require_text(
            rejection_reason, "Rejection reason is required", code="REJECTION_REASON_REQUIRED"
        )
        now = self._clock()
        return self._apply_transition(
            refund,
            operation="reject",
            to_status=RefundStatus.REJECTED,
            values={"rejection_reason": reason, "rejected_at": now, "rejected_by": actor_id},
            actor_id=actor_id,
            actor_name=actor_name,
            notes=reason,
        )

    @BaseService.measure_operation("mark_refund_processing")
    def mark_processing(
        self, refund_id: str, tenant_id: str, actor_id: str, actor_name: Optional[str]
    ) -> Refund:
        refund = self.get_refund_or_raise(refund_id, tenant_id)
        self.ensure_status(refund, "process", {RefundStatus.APPROVED})

        now = self._clock()
        return self._apply_transition(
            refund,
            operation="process",
            to_status=RefundStatus.PROCESSING,
            values={"processed_at": now, "processed_by": actor_id},
            actor_id=actor_id,
            actor_name=actor_name,
        )

    @BaseService.measure_operation("complete_refund")
    def complete(
        self,
        refund_id: str,
        tenant_id: str,
        actor_id: str,
        actor_name: Optional[str],
        processed_amount: Decimal,
        refund_reference: Optional[str] = None,
    ) -> Refund:
        """Record that money moved; the booking is marked refunded as well."""
        refund = self.get_refund_or_raise(refund_id, tenant_id)
        self.ensure_status(refund, "complete", {RefundStatus.APPROVED, RefundStatus.PROCESSING})

        amount = self._validate_amount(processed_amount, refund, field="processed_amount")
        reference = (refund_reference or "").strip() or None

        history_note = f"Refund processed: {amount}"
        if reference:
            history_note += f" (Ref: {reference})"

        now = self._clock()
        return self._apply_transition(
            refund,
            operation="complete",
            to_status=RefundStatus.COMPLETED,
            values={
                "processed_amount": amount,
                "refund_reference": reference,
                "completed_at": now,
            },
            actor_id=actor_id,
            actor_name=actor_name,
            notes=history_note,
            booking_payment_status=BookingPaymentStatus.REFUNDED.value,
        )

    @BaseService.measure_operation("fail_refund")
    def fail(
        self,
        refund_id: str,
        tenant_id: str,
        actor_id: str,
        actor_name: Optional[str],
        failure_reason: str,
    ) -> Refund:
        refund = self.get_refund_or_raise(refund_id, tenant_id)
        self.ensure_status(refund, "fail", {RefundStatus.PROCESSING})

        reason = self._require_text(
            failure_reason, "Failure reason is required", code="FAILURE_REASON_REQUIRED"
        )
        now = self._clock()
        return self._apply_transition(
            refund,
            operation="fail",
            to_status=RefundStatus.FAILED,
            values={"failure_reason": reason, "failed_at": now},
            actor_id=actor_id,
            actor_name=actor_name,
            notes=reason,
        )

    # ------------------------------------------------------------------ other

    @BaseService.measure_operation("update_refund_staff_notes")
    def update_staff_notes(self, refund_id: str, tenant_id: str, staff_notes: str) -> Refund:
        """Replace the internal staff notes. No status change, no history row."""
        notes = self._require_text(
            staff_notes, "Staff notes cannot be empty", code="STAFF_NOTES_REQUIRED"
        )
        with self.transaction():
            updated = self.refund_repository.update_fields(
                refund_id, tenant_id, staff_notes=notes
            )
            if not updated:
                raise RefundNotFoundException(refund_id, tenant_id)
        return self._reload(refund_id, tenant_id)

    @BaseService.measure_operation("calculate_refund_preview")
    def calculate_refund_preview(self, booking_id: str, tenant_id: str) -> RefundCalculationResponse:
        """Price a cancellation without persisting anything."""
        booking = self.booking_repository.get_for_tenant(booking_id, tenant_id)
        if booking is None:
            raise BookingNotFoundException(booking_id, tenant_id)

        snapshot = BookingSnapshot.from_booking(booking)
        policy_tiers = self.tenant_repository.get_cancellation_policies(tenant_id)
        calculation = self.policy_engine.evaluate_cancellation(
            total_amount=snapshot.total_amount,
            check_in=snapshot.check_in,
            cancelled_at=snapshot.cancelled_at,
            policy_tiers=policy_tiers,
            now=self._clock(),
        )
        return RefundCalculationResponse(
            booking_id=snapshot.id,
            currency=snapshot.currency,
            **calculation.to_payload(),
        )

    @staticmethod
    def run_safely(operation: Callable[..., Any], *args: Any, **kwargs: Any) -> OperationResult:
        """
        Call a workflow operation and fold the outcome into an ``OperationResult``.

        Domain and storage errors become ``success=False`` results; anything
        else is a bug and propagates.
        """
        try:
            result = operation(*args, **kwargs)
        except DomainException as exc:
            return OperationResult(success=False, error=exc.message, code=exc.code)
        except RepositoryException as exc:
            logger.error("Refund operation failed in storage: %s", exc)
            return OperationResult(success=False, error=str(exc), code="STORAGE_ERROR")

        if isinstance(result, Refund):
            result = RefundResponse.model_validate(result)
        return OperationResult(success=True, data=result)

    # ---------------------------------------------------------------- helpers

    def get_refund_or_raise(self, refund_id: str, tenant_id: str) -> Refund:
        refund = self.refund_repository.get_for_tenant(refund_id, tenant_id)
        if refund is None:
            raise RefundNotFoundException(refund_id, tenant_id)
        return refund

    def _reload(self, refund_id: str, tenant_id: str) -> Refund:
        refund = self.db.get(Refund, refund_id, populate_existing=True)
        if refund is None or refund.tenant_id != tenant_id:
            raise RefundNotFoundException(refund_id, tenant_id)
        return refund

    @staticmethod
    def ensure_status(
        refund: Refund, operation: str, allowed: Iterable[RefundStatus]
    ) -> None:
        allowed_values = {status.value for status in allowed}
        if refund.status not in allowed_values:
            raise InvalidRefundTransitionException(
                operation=operation,
                current_status=refund.status,
                required_statuses=allowed_values,
            )

    @staticmethod
    def _validate_amount(amount: Decimal | int | float | str, refund: Refund, *, field: str) -> Decimal:
        value = quantize_money(amount)
        original = quantize_money(refund.original_amount)
        if value < 0 or value > original:
            raise ValidationException(
                f"{field} must be between 0 and {original}",
                code="INVALID_REFUND_AMOUNT",
                details={field: str(value), "original_amount": str(original)},
            )
        return value

    @staticmethod
    def _require_text(value: Optional[str], message: str, *, code: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ValidationException(message, code=code)
        return text

    def _apply_transition(
        self,
        refund: Refund,
        *,
        operation: str,
        to_status: RefundStatus,
        values: dict[str, Any],
        actor_id: Optional[str],
        actor_name: Optional[str],
        notes: Optional[str] = None,
        booking_payment_status: Optional[str] = None,
    ) -> Refund:
        previous_status = refund.status
        refund_id = refund.id
        tenant_id = refund.tenant_id
        booking_id = refund.booking_id

        with self.transaction():
            updated = self.refund_repository.transition_status(
                refund_id,
                tenant_id,
                expected_status=previous_status,
                values={"status": to_status.value, **values},
            )
            if updated is None:
                current = self.refund_repository.get_status(refund_id) or previous_status
                raise InvalidRefundTransitionException(
                    operation=operation,
                    current_status=current,
                    required_statuses={previous_status},
                )

            self.refund_repository.append_history(
                refund_id=refund_id,
                previous_status=previous_status,
                new_status=to_status.value,
                changed_by=actor_id,
                changed_by_name=actor_name,
                notes=notes,
            )
            self.booking_repository.mirror_refund_status(
                booking_id,
                refund_status=to_status.value,
                payment_status=booking_payment_status,
            )

        prometheus_metrics.record_refund_transition(previous_status, to_status.value)
        self.log_operation(
            f"refund_{operation}",
            refund_id=refund_id,
            tenant_id=tenant_id,
            from_status=previous_status,
            to_status=to_status.value,
            actor_id=actor_id,
        )
        return updated
