# stayrefunds/repositories/factory.py
"""
Repository Factory.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .refund_repository import RefundRepository
    from .tenant_repository import TenantRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_refund_repository(db: Session) -> "RefundRepository":
        """Create repository for refunds and refund status history."""
        from .refund_repository import RefundRepository

        return RefundRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking reads and refund mirroring."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_tenant_repository(db: Session) -> "TenantRepository":
        """Create repository for tenant configuration."""
        from .tenant_repository import TenantRepository

        return TenantRepository(db)
