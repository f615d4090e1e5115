"""
Tenant model.

Only the columns the refund engine reads are mapped here: the cancellation
policy configuration and the payment gateway credentials.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from stayrefunds.core.enums import GatewayMode
from stayrefunds.core.ulid_helper import generate_ulid
from stayrefunds.database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Tenant(Base):
    """A property business hosting bookings on the platform."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    cancellation_policies: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )
    paystack_mode: Mapped[str] = mapped_column(
        String(10), nullable=False, default=GatewayMode.TEST.value
    )
    paystack_test_secret_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paystack_live_secret_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.business_name}, mode={self.paystack_mode})>"
