from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stayrefunds.core.exceptions import DuplicateRecordException, PolicyDecodeError
from stayrefunds.models import Booking, Refund, RefundStatusHistory
from stayrefunds.repositories import (
    GatewayCredentials,
    RepositoryFactory,
)
from stayrefunds.schemas.refund import DEFAULT_CANCELLATION_POLICIES, parse_policy_tiers

from tests.conftest import FIXED_NOW


@pytest.fixture
def refund_repo(unit_db):
    return RepositoryFactory.create_refund_repository(unit_db)


@pytest.fixture
def stored_refund(unit_db, refund_repo, make_booking):
    booking = make_booking()
    refund = refund_repo.create(
        tenant_id=booking.tenant_id,
        booking_id=booking.id,
        customer_id=booking.customer_id,
        original_amount=Decimal("1000.00"),
        eligible_amount=Decimal("500.00"),
        currency="ZAR",
        status="requested",
        requested_at=FIXED_NOW,
    )
    unit_db.commit()
    return refund


class TestTransitionStatus:
    def test_updates_when_expected_status_matches(self, refund_repo, stored_refund):
        updated = refund_repo.transition_status(
            stored_refund.id,
            stored_refund.tenant_id,
            expected_status="requested",
            values={"status": "under_review", "reviewed_by": "staff_01"},
        )

        assert updated is not None
        assert updated.status == "under_review"
        assert updated.reviewed_by == "staff_01"
        assert refund_repo.get_status(stored_refund.id) == "under_review"

    def test_returns_none_when_status_moved_on(self, refund_repo, stored_refund):
        result = refund_repo.transition_status(
            stored_refund.id,
            stored_refund.tenant_id,
            expected_status="approved",
            values={"status": "processing"},
        )

        assert result is None
        assert refund_repo.get_status(stored_refund.id) == "requested"

    def test_other_tenant_cannot_transition(self, refund_repo, stored_refund):
        result = refund_repo.transition_status(
            stored_refund.id,
            "01HZZZZZZZZZZZZZZZZZZZZZZT",
            expected_status="requested",
            values={"status": "rejected"},
        )

        assert result is None

    def test_unknown_refund_status_is_none(self, refund_repo):
        assert refund_repo.get_status("01HZZZZZZZZZZZZZZZZZZZZZZR") is None


class TestHistory:
    def test_history_is_returned_in_insertion_order(self, refund_repo, stored_refund):
        for previous, new in [(None, "requested"), ("requested", "under_review"), ("under_review", "approved")]:
            refund_repo.append_history(
                refund_id=stored_refund.id,
                previous_status=previous,
                new_status=new,
                changed_by="staff_01",
                changed_by_name="Lerato",
            )

        history = refund_repo.list_history(stored_refund.id)

        assert [entry.new_status for entry in history] == ["requested", "under_review", "approved"]
        assert all(isinstance(entry, RefundStatusHistory) for entry in history)


class TestCreate:
    def test_second_refund_for_booking_violates_uniqueness(self, refund_repo, stored_refund, unit_db):
        with pytest.raises(DuplicateRecordException):
            refund_repo.create(
                tenant_id=stored_refund.tenant_id,
                booking_id=stored_refund.booking_id,
                original_amount=Decimal("1000.00"),
                eligible_amount=Decimal("1000.00"),
                currency="ZAR",
                status="requested",
            )

        stored = unit_db.execute(
            select(func.count(Refund.id)).where(Refund.booking_id == stored_refund.booking_id)
        ).scalar_one()
        assert stored == 1


class TestQueries:
    def test_list_for_tenant_counts_all_matches(self, refund_repo, make_booking, tenant):
        created = []
        for hours in (1, 2, 3):
            booking = make_booking()
            refund = refund_repo.create(
                tenant_id=tenant.id,
                booking_id=booking.id,
                original_amount=Decimal("100.00"),
                eligible_amount=Decimal("100.00"),
                currency="ZAR",
                status="requested",
                requested_at=FIXED_NOW - timedelta(hours=hours),
            )
            created.append(refund)

        page, total = refund_repo.list_for_tenant(tenant.id, limit=2, offset=1)

        assert total == 3
        assert [refund.id for refund in page] == [created[1].id, created[2].id]

    def test_get_for_tenant_is_scoped(self, refund_repo, stored_refund):
        assert refund_repo.get_for_tenant(stored_refund.id, stored_refund.tenant_id) is not None
        assert refund_repo.get_for_tenant(stored_refund.id, "01HZZZZZZZZZZZZZZZZZZZZZZT") is None

    def test_stats_rows_contain_only_aggregate_columns(self, refund_repo, stored_refund):
        rows = refund_repo.get_stats_rows(stored_refund.tenant_id)

        assert len(rows) == 1
        assert rows[0].status == "requested"
        assert rows[0].eligible_amount == Decimal("500.00")


class TestBookingRepository:
    def test_mirror_refund_status_updates_booking(self, unit_db, stored_refund):
        bookings = RepositoryFactory.create_booking_repository(unit_db)

        bookings.mirror_refund_status(
            stored_refund.booking_id,
            refund_status="completed",
            refund_id=stored_refund.id,
            payment_status="refunded",
        )

        booking = unit_db.get(Booking, stored_refund.booking_id, populate_existing=True)
        assert booking.refund_status == "completed"
        assert booking.refund_id == stored_refund.id
        assert booking.payment_status == "refunded"

    def test_mirror_leaves_payment_status_alone_by_default(self, unit_db, stored_refund):
        bookings = RepositoryFactory.create_booking_repository(unit_db)

        bookings.mirror_refund_status(stored_refund.booking_id, refund_status="approved")

        booking = unit_db.get(Booking, stored_refund.booking_id, populate_existing=True)
        assert booking.payment_status == "paid"


class TestTenantRepository:
    def test_policies_default_when_unset(self, unit_db, tenant):
        tenant.cancellation_policies = None
        unit_db.flush()

        tiers = RepositoryFactory.create_tenant_repository(unit_db).get_cancellation_policies(tenant.id)

        assert tiers == list(DEFAULT_CANCELLATION_POLICIES)

    def test_configured_policies_are_decoded(self, unit_db, tenant):
        tiers = RepositoryFactory.create_tenant_repository(unit_db).get_cancellation_policies(tenant.id)

        assert [(t.days_before, t.refund_percentage) for t in tiers] == [(7, 100), (3, 50), (0, 0)]

    def test_test_mode_credentials(self, unit_db, tenant):
        credentials = RepositoryFactory.create_tenant_repository(unit_db).get_gateway_credentials(tenant.id)

        assert credentials == GatewayCredentials(mode="test", secret_key="sk_test_abc123")
        assert credentials.is_configured


@pytest.mark.parametrize(
    "raw",
    [
        {"days_before": 7, "refund_percentage": 100},
        [{"days_before": "a week", "refund_percentage": 100}],
        [{"days_before": 7, "refund_percentage": 101}],
        [{"refund_percentage": 50}],
        "7:100",
    ],
)
def test_malformed_policy_configuration_is_rejected(raw):
    with pytest.raises(PolicyDecodeError):
        parse_policy_tiers(raw)


def test_refund_model_settlement_amount_prefers_approved():
    refund = Refund(eligible_amount=Decimal("500.00"), approved_amount=None)
    assert refund.settlement_amount == Decimal("500.00")

    refund.approved_amount = Decimal("320.00")
    assert refund.settlement_amount == Decimal("320.00")

    refund.approved_amount = Decimal("0.00")
    assert refund.settlement_amount == Decimal("0.00")
