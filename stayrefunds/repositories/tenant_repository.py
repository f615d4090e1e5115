"""
Tenant Repository.

Decodes tenant configuration at the store boundary: cancellation policy
tiers come back validated, gateway credentials resolved for the active mode.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import GatewayMode
from ..core.exceptions import TenantNotFoundException
from ..models.tenant import Tenant
from ..schemas.refund import CancellationPolicyTier, parse_policy_tiers
from .base_repository import BaseRepository


@dataclass(frozen=True)
class GatewayCredentials:
    mode: str
    secret_key: Optional[str]

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)


class TenantRepository(BaseRepository[Tenant]):
    def __init__(self, db: Session):
        super().__init__(db, Tenant)

    def get_cancellation_policies(self, tenant_id: str) -> list[CancellationPolicyTier]:
        """
        Return the tenant's cancellation tiers, or the platform default when unset.

        Raises:
            TenantNotFoundException: If the tenant does not exist
            PolicyDecodeError: If the stored configuration is malformed
        """
        tenant = self.get_by_id(tenant_id)
        if tenant is None:
            raise TenantNotFoundException(tenant_id)
        return parse_policy_tiers(tenant.cancellation_policies)

    def get_gateway_credentials(self, tenant_id: str) -> GatewayCredentials:
        """Resolve the Paystack secret key for the tenant's configured mode."""
        tenant = self.get_by_id(tenant_id)
        if tenant is None:
            raise TenantNotFoundException(tenant_id)

        mode = tenant.paystack_mode or GatewayMode.TEST.value
        if mode == GatewayMode.LIVE.value:
            secret = tenant.paystack_live_secret_key
        else:
            secret = tenant.paystack_test_secret_key

        if not secret and settings.paystack_fallback_secret_key is not None:
            secret = settings.paystack_fallback_secret_key.get_secret_value()
        return GatewayCredentials(mode=mode, secret_key=secret or None)
