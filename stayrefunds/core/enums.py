# stayrefunds/core/enums.py
"""
Core enums for the refund lifecycle engine.

Values are persisted as plain strings; the enums give the service layer
type safety while keeping the stored representation stable.
"""

from enum import Enum


class RefundStatus(str, Enum):
    """
    Workflow status of a refund.

    requested → under_review → approved/rejected → processing → completed/failed
    """

    REQUESTED = "requested"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundPaymentMethod(str, Enum):
    PAYSTACK = "paystack"
    EFT = "eft"
    MANUAL = "manual"
    PAYPAL = "paypal"


class GatewayMode(str, Enum):
    TEST = "test"
    LIVE = "live"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    REFUNDED = "refunded"
