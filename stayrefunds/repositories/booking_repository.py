"""
Booking Repository.

Reads bookings for refund creation and maintains the denormalized refund
fields (``refund_id``, ``refund_status``) mirrored onto each booking.
"""

from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking
from .base_repository import BaseRepository


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_for_tenant(self, booking_id: str, tenant_id: str) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.id == booking_id, Booking.tenant_id == tenant_id)
        rows = self._execute_query(stmt)
        return rows[0] if rows else None

    def mirror_refund_status(
        self,
        booking_id: str,
        *,
        refund_status: str,
        refund_id: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> None:
        """Write the cached refund status (and optional payment status) onto a booking."""
        values: dict[str, Any] = {"refund_status": refund_status}
        if refund_id is not None:
            values["refund_id"] = refund_id
        if payment_status is not None:
            values["payment_status"] = payment_status

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        try:
            self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error mirroring refund status to booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to update booking: {str(e)}")
