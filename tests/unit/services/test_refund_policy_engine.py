from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from stayrefunds.schemas.refund import CancellationPolicyTier, parse_policy_tiers
from stayrefunds.services.refund_policy_engine import (
    RefundPolicyEngine,
    as_utc,
    calculate_eligible_refund,
    days_before_check_in,
    select_policy_tier,
)

CHECK_IN = datetime(2026, 4, 20, 14, 0, tzinfo=timezone.utc)

TIERS = [
    CancellationPolicyTier(days_before=7, refund_percentage=100, label="Full"),
    CancellationPolicyTier(days_before=3, refund_percentage=50, label="Half"),
    CancellationPolicyTier(days_before=0, refund_percentage=0, label="None"),
]


def _cancelled(days: float) -> datetime:
    return CHECK_IN - timedelta(days=days)


@pytest.mark.parametrize(
    ("days", "expected_amount", "expected_label"),
    [
        (10, Decimal("1000.00"), "Full"),
        (7, Decimal("1000.00"), "Full"),
        (5, Decimal("500.00"), "Half"),
        (3, Decimal("500.00"), "Half"),
        (0, Decimal("0.00"), "None"),
    ],
)
def test_tier_selection_for_standard_policy(days, expected_amount, expected_label):
    result = calculate_eligible_refund(Decimal("1000"), CHECK_IN, TIERS, _cancelled(days))

    assert result.eligible_amount == expected_amount
    assert result.policy_applied.label == expected_label
    assert result.days_before_check_in == days


def test_tier_order_in_configuration_does_not_matter():
    shuffled = [TIERS[2], TIERS[0], TIERS[1]]

    result = calculate_eligible_refund(Decimal("1000"), CHECK_IN, shuffled, _cancelled(5))

    assert result.policy_applied.label == "Half"


def test_no_qualifying_tier_returns_zero_refund():
    tiers = [CancellationPolicyTier(days_before=14, refund_percentage=100, label="Two weeks")]

    result = calculate_eligible_refund(Decimal("800"), CHECK_IN, tiers, _cancelled(2))

    assert result.eligible_amount == Decimal("0.00")
    assert result.refund_percentage == 0
    assert result.policy_applied.label == "No refund available"


def test_empty_tier_list_returns_zero_refund():
    result = calculate_eligible_refund(Decimal("800"), CHECK_IN, [], _cancelled(30))

    assert result.eligible_amount == Decimal("0.00")
    assert result.policy_applied.days_before == 0


def test_cancellation_after_check_in_gives_negative_days():
    result = calculate_eligible_refund(Decimal("800"), CHECK_IN, TIERS, _cancelled(-2))

    assert result.days_before_check_in == -2
    assert result.eligible_amount == Decimal("0.00")


def test_partial_days_round_up():
    # 2 days and 1 hour out counts as 3 days
    assert days_before_check_in(CHECK_IN, CHECK_IN - timedelta(days=2, hours=1)) == 3
    assert days_before_check_in(CHECK_IN, CHECK_IN - timedelta(hours=1)) == 1


def test_ties_keep_configured_order():
    tiers = [
        CancellationPolicyTier(days_before=5, refund_percentage=80, label="First"),
        CancellationPolicyTier(days_before=5, refund_percentage=60, label="Second"),
    ]

    assert select_policy_tier(tiers, 6).label == "First"


def test_amount_rounds_half_up_to_cents():
    tiers = [CancellationPolicyTier(days_before=0, refund_percentage=50, label="Half")]

    result = calculate_eligible_refund(Decimal("100.05"), CHECK_IN, tiers, _cancelled(1))

    # 50.025 -> 50.03
    assert result.eligible_amount == Decimal("50.03")


@pytest.mark.parametrize("amount", ["0", "0.01", "99.99", "1234.56", "100000"])
@pytest.mark.parametrize("days", [-1, 0, 2, 3, 6, 7, 45])
def test_eligible_amount_stays_within_booking_amount(amount, days):
    booking_amount = Decimal(amount)

    result = calculate_eligible_refund(booking_amount, CHECK_IN, TIERS, _cancelled(days))

    assert Decimal("0") <= result.eligible_amount <= booking_amount
    expected = (booking_amount * result.refund_percentage / Decimal(100)).quantize(Decimal("0.01"))
    assert abs(result.eligible_amount - expected) <= Decimal("0.01")


def test_negative_booking_amount_is_rejected():
    with pytest.raises(ValueError):
        calculate_eligible_refund(Decimal("-1"), CHECK_IN, TIERS, _cancelled(10))


def test_date_check_in_is_treated_as_midnight_utc():
    assert as_utc(date(2026, 4, 20)) == datetime(2026, 4, 20, tzinfo=timezone.utc)
    assert as_utc(datetime(2026, 4, 20, 8, 30)) == datetime(2026, 4, 20, 8, 30, tzinfo=timezone.utc)


def test_engine_falls_back_to_now_without_cancellation_timestamp():
    engine = RefundPolicyEngine()
    now = _cancelled(10)

    result = engine.evaluate_cancellation(
        total_amount=Decimal("1000"),
        check_in=CHECK_IN,
        cancelled_at=None,
        policy_tiers=TIERS,
        now=now,
    )

    assert result.cancellation_date == now
    assert result.eligible_amount == Decimal("1000.00")


def test_missing_policy_configuration_uses_platform_default():
    tiers = parse_policy_tiers(None)

    assert len(tiers) == 1
    assert tiers[0].days_before == 7
    assert tiers[0].refund_percentage == 100
    assert tiers[0].label == "Free cancellation up to 7 days before"
