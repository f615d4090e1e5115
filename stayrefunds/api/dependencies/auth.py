"""
Request identity dependencies.

Authentication happens upstream; the gateway forwards the tenant and the
acting staff member as headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

DEFAULT_ACTOR_NAME = "Staff"


@dataclass(frozen=True)
class ActorContext:
    tenant_id: str
    actor_id: str
    actor_name: str


def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID")) -> str:
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Tenant ID required", "code": "TENANT_ID_REQUIRED"},
        )
    return x_tenant_id.strip()


def get_actor(
    tenant_id: str = Depends(get_tenant_id),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    x_user_name: Optional[str] = Header(default=None, alias="X-User-Name"),
) -> ActorContext:
    """Identity of the staff member performing a state change."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "User ID required", "code": "USER_ID_REQUIRED"},
        )
    name = (x_user_name or "").strip() or DEFAULT_ACTOR_NAME
    return ActorContext(tenant_id=tenant_id, actor_id=x_user_id.strip(), actor_name=name)
