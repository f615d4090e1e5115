"""
FastAPI dependencies shared by the refund routes.
"""

from .auth import ActorContext, get_actor, get_tenant_id
from .database import get_db
from .services import (
    get_refund_reporting_service,
    get_refund_settlement_service,
    get_refund_workflow_service,
)

__all__ = [
    "ActorContext",
    "get_actor",
    "get_db",
    "get_refund_reporting_service",
    "get_refund_settlement_service",
    "get_refund_workflow_service",
    "get_tenant_id",
]
