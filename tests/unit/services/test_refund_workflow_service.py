from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from stayrefunds.core.exceptions import (
    BookingNotFoundException,
    InvalidRefundTransitionException,
    PolicyDecodeError,
    RefundAlreadyExistsException,
    RefundNotFoundException,
    ValidationException,
)
from stayrefunds.models import Booking, Refund, RefundStatusHistory
from stayrefunds.services.refund_workflow_service import (
    AUTO_CREATED_NOTE,
    RefundWorkflowService,
)

STAFF_ID = "staff_01"
STAFF_NAME = "Lerato"


@pytest.fixture
def service(unit_db, fixed_clock) -> RefundWorkflowService:
    return RefundWorkflowService(unit_db, clock=fixed_clock)


@pytest.fixture
def refund(service, make_booking, tenant) -> Refund:
    booking = make_booking()
    return service.create_refund_from_cancellation(booking.id, tenant.id)


def _history(unit_db, refund_id: str) -> list[RefundStatusHistory]:
    stmt = (
        select(RefundStatusHistory)
        .where(RefundStatusHistory.refund_id == refund_id)
        .order_by(RefundStatusHistory.created_at, RefundStatusHistory.id)
    )
    return list(unit_db.execute(stmt).scalars())


def _booking(unit_db, booking_id: str) -> Booking:
    booking = unit_db.get(Booking, booking_id, populate_existing=True)
    assert booking is not None
    return booking


class TestCreateRefund:
    def test_creates_requested_refund_priced_by_policy(self, service, make_booking, tenant, unit_db):
        booking = make_booking()

        refund = service.create_refund_from_cancellation(booking.id, tenant.id)

        assert refund.status == "requested"
        assert refund.original_amount == Decimal("1000.00")
        assert refund.eligible_amount == Decimal("1000.00")
        assert refund.refund_percentage == 100
        assert refund.days_before_checkin == 10
        assert refund.policy_applied["label"] == "Full refund 7+ days out"
        assert refund.payment_method == "paystack"
        assert refund.original_payment_reference == "T1234567890"
        assert refund.currency == "ZAR"

        history = _history(unit_db, refund.id)
        assert len(history) == 1
        assert history[0].previous_status is None
        assert history[0].new_status == "requested"
        assert history[0].notes == AUTO_CREATED_NOTE

        mirrored = _booking(unit_db, booking.id)
        assert mirrored.refund_id == refund.id
        assert mirrored.refund_status == "requested"

    def test_second_refund_for_same_booking_is_rejected(self, service, refund, unit_db):
        with pytest.raises(RefundAlreadyExistsException) as exc_info:
            service.create_refund_from_cancellation(refund.booking_id, refund.tenant_id)

        assert exc_info.value.details["existing_refund_id"] == refund.id
        count = unit_db.execute(
            select(Refund).where(Refund.booking_id == refund.booking_id)
        ).scalars().all()
        assert len(count) == 1
        assert _history(unit_db, refund.id)[-1].new_status == "requested"

    def test_booking_of_another_tenant_is_not_found(self, service, make_booking):
        booking = make_booking()

        with pytest.raises(BookingNotFoundException):
            service.create_refund_from_cancellation(booking.id, "01HZZZZZZZZZZZZZZZZZZZZZZT")

    def test_require_cancelled_rejects_active_booking(self, service, make_booking, tenant):
        booking = make_booking(status="confirmed")

        with pytest.raises(ValidationException) as exc_info:
            service.create_refund_from_cancellation(booking.id, tenant.id, require_cancelled=True)

        assert exc_info.value.code == "BOOKING_NOT_CANCELLED"

    def test_uses_clock_when_booking_has_no_cancellation_time(self, service, make_booking, tenant):
        # Fixed clock is 2026-03-10 12:00 UTC; check-in 2026-03-14 -> 4 days (ceil of 3.5)
        booking = make_booking(cancelled_at=None, check_in=date(2026, 3, 14))

        refund = service.create_refund_from_cancellation(booking.id, tenant.id)

        assert refund.days_before_checkin == 4
        assert refund.eligible_amount == Decimal("500.00")

    def test_malformed_policy_configuration_raises_decode_error(
        self, service, make_booking, tenant, unit_db
    ):
        tenant.cancellation_policies = [{"days_before": "soon", "refund_percentage": 300}]
        unit_db.flush()
        booking = make_booking()

        with pytest.raises(PolicyDecodeError):
            service.create_refund_from_cancellation(booking.id, tenant.id)

    def test_unknown_payment_method_is_stored_as_none(self, service, make_booking, tenant):
        booking = make_booking(payment_method="crypto")

        refund = service.create_refund_from_cancellation(booking.id, tenant.id)

        assert refund.payment_method is None

    def test_negative_booking_amount_is_rejected(self, service, make_booking, tenant, unit_db):
        booking = make_booking(total_amount=Decimal("-10.00"))

        with pytest.raises(ValidationException) as exc_info:
            service.create_refund_from_cancellation(booking.id, tenant.id)

        assert exc_info.value.code == "INVALID_BOOKING_AMOUNT"
        assert exc_info.value.details["total_amount"] == "-10.00"
        with pytest.raises(ValidationException):
            service.calculate_refund_preview(booking.id, tenant.id)


class TestTransitions:
    def test_full_happy_path_builds_contiguous_history(self, service, refund, unit_db):
        tenant_id = refund.tenant_id
        service.mark_under_review(refund.id, tenant_id, STAFF_ID, STAFF_NAME)
        service.approve(refund.id, tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000.00"))
        service.mark_processing(refund.id, tenant_id, STAFF_ID, STAFF_NAME)
        completed = service.complete(
            refund.id, tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000.00"), "RF-991"
        )

        assert completed.status == "completed"
        assert completed.processed_amount == Decimal("1000.00")
        assert completed.refund_reference == "RF-991"

        history = _history(unit_db, refund.id)
        assert len(history) == 5
        chain = [(h.previous_status, h.new_status) for h in history]
        assert chain == [
            (None, "requested"),
            ("requested", "under_review"),
            ("under_review", "approved"),
            ("approved", "processing"),
            ("processing", "completed"),
        ]
        for earlier, later in zip(history, history[1:]):
            assert later.previous_status == earlier.new_status
        assert history[2].notes == "Approved for 1000.00"
        assert history[4].notes == "Refund processed: 1000.00 (Ref: RF-991)"
        assert history[4].changed_by == STAFF_ID
        assert history[4].changed_by_name == STAFF_NAME

        booking = _booking(unit_db, refund.booking_id)
        assert booking.refund_status == "completed"
        assert booking.payment_status == "refunded"

    def test_reject_with_blank_reason_leaves_refund_untouched(self, service, refund, unit_db):
        with pytest.raises(ValidationException):
            service.reject(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, "   ")

        stored = unit_db.get(Refund, refund.id, populate_existing=True)
        assert stored.status == "requested"
        assert len(_history(unit_db, refund.id)) == 1

    def test_reject_records_reason(self, service, refund, unit_db):
        rejected = service.reject(
            refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, "Booking was a no-show"
        )

        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Booking was a no-show"
        assert rejected.rejected_by == STAFF_ID
        assert _history(unit_db, refund.id)[-1].notes == "Booking was a no-show"
        assert _booking(unit_db, refund.booking_id).refund_status == "rejected"

    def test_approve_different_amount_requires_override_reason(self, service, refund, unit_db):
        with pytest.raises(ValidationException) as exc_info:
            service.approve(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, Decimal("750"))

        assert exc_info.value.code == "OVERRIDE_REASON_REQUIRED"
        assert unit_db.get(Refund, refund.id, populate_existing=True).status == "requested"
        assert len(_history(unit_db, refund.id)) == 1

    def test_approve_with_override_reason_notes_the_override(self, service, refund, unit_db):
        approved = service.approve(
            refund.id,
            refund.tenant_id,
            STAFF_ID,
            STAFF_NAME,
            Decimal("750"),
            override_reason="Goodwill for repeat guest",
            notes="Called guest",
        )

        assert approved.status == "approved"
        assert approved.approved_amount == Decimal("750.00")
        assert approved.override_reason == "Goodwill for repeat guest"
        assert approved.staff_notes == "Called guest"
        assert (
            _history(unit_db, refund.id)[-1].notes
            == "Approved for 750.00 (Override: Goodwill for repeat guest)"
        )

    def test_approve_amount_above_original_is_rejected(self, service, refund):
        with pytest.raises(ValidationException) as exc_info:
            service.approve(
                refund.id,
                refund.tenant_id,
                STAFF_ID,
                STAFF_NAME,
                Decimal("1000.01"),
                override_reason="Typo",
            )

        assert exc_info.value.code == "INVALID_REFUND_AMOUNT"

    def test_mark_processing_twice_fails_without_extra_history(self, service, refund, unit_db):
        service.approve(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000"))
        service.mark_processing(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME)
        history_before = len(_history(unit_db, refund.id))

        with pytest.raises(InvalidRefundTransitionException) as exc_info:
            service.mark_processing(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME)

        assert exc_info.value.details["current_status"] == "processing"
        assert exc_info.value.details["required_statuses"] == ["approved"]
        assert len(_history(unit_db, refund.id)) == history_before

    def test_review_requires_requested_status(self, service, refund):
        service.mark_under_review(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME)

        with pytest.raises(InvalidRefundTransitionException):
            service.mark_under_review(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME)

    def test_fail_only_from_processing(self, service, refund, unit_db):
        with pytest.raises(InvalidRefundTransitionException):
            service.fail(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, "Bank rejected")

        service.approve(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000"))
        service.mark_processing(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME)
        failed = service.fail(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, "Bank rejected")

        assert failed.status == "failed"
        assert failed.failure_reason == "Bank rejected"
        assert _booking(unit_db, refund.booking_id).refund_status == "failed"

    def test_complete_directly_from_approved(self, service, refund):
        service.approve(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000"))

        completed = service.complete(
            refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000")
        )

        assert completed.status == "completed"
        assert completed.refund_reference is None

    def test_terminal_refund_cannot_be_approved(self, service, refund):
        service.reject(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, "Duplicate request")

        with pytest.raises(InvalidRefundTransitionException):
            service.approve(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000"))

    def test_refund_of_another_tenant_is_not_found(self, service, refund):
        with pytest.raises(RefundNotFoundException):
            service.mark_under_review(refund.id, "01HZZZZZZZZZZZZZZZZZZZZZZT", STAFF_ID, STAFF_NAME)

    def test_stale_status_loses_compare_and_swap(self, service, refund, unit_db, monkeypatch):
        # Another writer rejects the refund after this caller has read it as "requested".
        stale_copy = unit_db.get(Refund, refund.id)
        monkeypatch.setattr(service, "get_refund_or_raise", lambda *_args: stale_copy)
        unit_db.execute(
            update(Refund)
            .where(Refund.id == refund.id)
            .values(status="rejected")
            .execution_options(synchronize_session=False)
        )
        unit_db.commit()
        assert stale_copy.status == "requested"

        with pytest.raises(InvalidRefundTransitionException) as exc_info:
            service.approve(refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, Decimal("1000"))

        assert exc_info.value.details["current_status"] == "rejected"
        assert len(_history(unit_db, refund.id)) == 1
        stored = unit_db.get(Refund, refund.id, populate_existing=True)
        assert stored.status == "rejected"
        assert stored.approved_amount is None


class TestStaffNotesAndPreview:
    def test_update_staff_notes_does_not_touch_status(self, service, refund, unit_db):
        updated = service.update_staff_notes(refund.id, refund.tenant_id, "Guest emailed twice")

        assert updated.staff_notes == "Guest emailed twice"
        assert updated.status == "requested"
        assert len(_history(unit_db, refund.id)) == 1

    def test_blank_staff_notes_are_rejected(self, service, refund):
        with pytest.raises(ValidationException):
            service.update_staff_notes(refund.id, refund.tenant_id, "")

    def test_staff_notes_for_unknown_refund(self, service, tenant):
        with pytest.raises(RefundNotFoundException):
            service.update_staff_notes("01HZZZZZZZZZZZZZZZZZZZZZZR", tenant.id, "note")

    def test_reload_of_vanished_refund_is_not_found(self, service, refund):
        with pytest.raises(RefundNotFoundException):
            service._reload("01HZZZZZZZZZZZZZZZZZZZZZZR", refund.tenant_id)

    def test_reload_scoped_to_tenant(self, service, refund):
        with pytest.raises(RefundNotFoundException):
            service._reload(refund.id, "01HOTHERTENANT000000000000")

    def test_staff_notes_when_refund_disappears_after_update(
        self, service, refund, monkeypatch
    ):
        unknown_id = "01HZZZZZZZZZZZZZZZZZZZZZZR"
        monkeypatch.setattr(
            service.refund_repository, "update_fields", lambda *args, **kwargs: True
        )

        with pytest.raises(RefundNotFoundException):
            service.update_staff_notes(unknown_id, refund.tenant_id, "note")

    def test_preview_does_not_persist(self, service, make_booking, tenant, unit_db):
        booking = make_booking(cancelled_at=None)

        preview = service.calculate_refund_preview(booking.id, tenant.id)

        # clock 2026-03-10 12:00, check-in 2026-03-20 -> ceil(9.5) = 10 days
        assert preview.days_before_check_in == 10
        assert preview.eligible_amount == Decimal("1000.00")
        assert preview.currency == "ZAR"
        assert unit_db.execute(select(Refund)).scalars().all() == []


class TestRunSafely:
    def test_domain_error_becomes_failed_result(self, service, refund):
        result = RefundWorkflowService.run_safely(
            service.reject, refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME, ""
        )

        assert result.success is False
        assert result.error == "Rejection reason is required"
        assert result.code == "REJECTION_REASON_REQUIRED"

    def test_negative_booking_amount_becomes_failed_result(self, service, make_booking, tenant):
        booking = make_booking(total_amount=Decimal("-10.00"))

        result = RefundWorkflowService.run_safely(
            service.create_refund_from_cancellation, booking.id, tenant.id
        )

        assert result.success is False
        assert result.code == "INVALID_BOOKING_AMOUNT"

    def test_success_wraps_refund_response(self, service, refund):
        result = RefundWorkflowService.run_safely(
            service.mark_under_review, refund.id, refund.tenant_id, STAFF_ID, STAFF_NAME
        )

        assert result.success is True
        assert result.error is None
        assert result.data.status == "under_review"
        assert result.data.id == refund.id
