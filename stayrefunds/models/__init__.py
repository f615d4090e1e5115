"""ORM models; importing this package registers every table on ``Base.metadata``."""

from .booking import Booking
from .refund import Refund, RefundStatusHistory
from .tenant import Tenant

__all__ = [
    "Booking",
    "Refund",
    "RefundStatusHistory",
    "Tenant",
]
