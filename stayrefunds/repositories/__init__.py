from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .refund_repository import RefundRepository
from .tenant_repository import GatewayCredentials, TenantRepository

__all__ = [
    "BookingRepository",
    "GatewayCredentials",
    "RefundRepository",
    "RepositoryFactory",
    "TenantRepository",
]
