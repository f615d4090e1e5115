"""Refund eligibility evaluation from tiered cancellation policies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
import math
from typing import Iterable, Optional, Sequence

from stayrefunds.schemas.refund import NO_REFUND_TIER, CancellationPolicyTier

_ONE_DAY_SECONDS = timedelta(days=1).total_seconds()
_CENT = Decimal("0.01")


@dataclass(frozen=True)
class RefundCalculation:
    original_amount: Decimal
    eligible_amount: Decimal
    refund_percentage: int
    days_before_check_in: int
    policy_applied: CancellationPolicyTier
    cancellation_date: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            "original_amount": self.original_amount,
            "eligible_amount": self.eligible_amount,
            "refund_percentage": self.refund_percentage,
            "days_before_check_in": self.days_before_check_in,
            "policy_applied": self.policy_applied,
            "cancellation_date": self.cancellation_date,
        }


def as_utc(value: datetime | date) -> datetime:
    """Normalize a date or datetime to an aware UTC datetime (naive means UTC)."""
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def quantize_money(amount: Decimal | int | float | str) -> Decimal:
    return Decimal(str(amount)).quantize(_CENT, rounding=ROUND_HALF_UP)


def days_before_check_in(check_in: datetime | date, cancellation: datetime | date) -> int:
    """Whole days between cancellation and check-in, rounded up; negative after check-in."""
    delta = as_utc(check_in) - as_utc(cancellation)
    return math.ceil(delta.total_seconds() / _ONE_DAY_SECONDS)


def select_policy_tier(
    policy_tiers: Iterable[CancellationPolicyTier], days_before: int
) -> CancellationPolicyTier:
    # sorted() is stable, so tiers sharing days_before keep their configured order.
    ordered = sorted(policy_tiers, key=lambda tier: tier.days_before, reverse=True)
    for tier in ordered:
        if tier.days_before <= days_before:
            return tier
    return NO_REFUND_TIER


def calculate_eligible_refund(
    booking_amount: Decimal | int | float | str,
    check_in_date: datetime | date,
    policy_tiers: Sequence[CancellationPolicyTier],
    cancellation_date: Optional[datetime | date] = None,
) -> RefundCalculation:
    """
    Compute the refund a cancellation qualifies for.

    The most generous tier whose ``days_before`` the cancellation still meets
    is applied. When no tier qualifies the result is a zero refund, never an
    error.

    Args:
        booking_amount: Total amount paid for the booking
        check_in_date: Check-in date (naive values are treated as UTC)
        policy_tiers: Tenant cancellation tiers, in any order
        cancellation_date: When the booking was cancelled; defaults to now

    Returns:
        RefundCalculation with the eligible amount and the tier applied
    """
    amount = Decimal(str(booking_amount))
    if amount < 0:
        raise ValueError("booking_amount must not be negative")

    cancelled_at = as_utc(cancellation_date or datetime.now(timezone.utc))
    days = days_before_check_in(check_in_date, cancelled_at)
    tier = select_policy_tier(policy_tiers, days)

    eligible = quantize_money(amount * tier.refund_percentage / Decimal(100))

    return RefundCalculation(
        original_amount=amount,
        eligible_amount=eligible,
        refund_percentage=tier.refund_percentage,
        days_before_check_in=days,
        policy_applied=tier,
        cancellation_date=cancelled_at,
    )


class RefundPolicyEngine:
    """Injectable wrapper around the eligibility calculation."""

    def evaluate(
        self,
        booking_amount: Decimal | int | float | str,
        check_in_date: datetime | date,
        policy_tiers: Sequence[CancellationPolicyTier],
        cancellation_date: Optional[datetime | date] = None,
    ) -> RefundCalculation:
        return calculate_eligible_refund(
            booking_amount, check_in_date, policy_tiers, cancellation_date
        )

    def evaluate_cancellation(
        self,
        *,
        total_amount: Decimal,
        check_in: date | datetime,
        cancelled_at: Optional[datetime],
        policy_tiers: Sequence[CancellationPolicyTier],
        now: Optional[datetime] = None,
    ) -> RefundCalculation:
        """Evaluate a booking cancellation, falling back to ``now`` when it has no timestamp."""
        cancellation = cancelled_at or now or datetime.now(timezone.utc)
        return self.evaluate(total_amount, check_in, policy_tiers, cancellation)
