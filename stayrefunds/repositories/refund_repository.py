# stayrefunds/repositories/refund_repository.py
"""
Refund Repository.

Owns persistence of refund rows and their append-only status history.
Status changes go through ``transition_status``, a compare-and-swap UPDATE
guarded on the status the caller last observed, so two concurrent
transitions against the same refund cannot both succeed.
"""

from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import Row, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.refund import Refund, RefundStatusHistory
from .base_repository import BaseRepository


class RefundRepository(BaseRepository[Refund]):
    """Data access for refunds and refund status history."""

    def __init__(self, db: Session):
        super().__init__(db, Refund)

    # ------------------------------------------------------------------ reads

    def get_for_tenant(self, refund_id: str, tenant_id: str) -> Optional[Refund]:
        """Fetch a refund only if it belongs to the tenant, refreshed from the database."""
        stmt = (
            select(Refund)
            .where(Refund.id == refund_id, Refund.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        rows = self._execute_query(stmt)
        return rows[0] if rows else None

    def get_by_booking(self, booking_id: str) -> Optional[Refund]:
        return self.find_one_by(booking_id=booking_id)

    def get_status(self, refund_id: str) -> Optional[str]:
        """Read the stored status straight from the table, bypassing the identity map."""
        return self._execute_scalar(select(Refund.status).where(Refund.id == refund_id))

    def list_for_tenant(
        self,
        tenant_id: str,
        *,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Refund], int]:
        """
        List a tenant's refunds, newest request first.

        Returns:
            Tuple of (page of refunds, total count matching the filters)
        """
        conditions = [Refund.tenant_id == tenant_id]
        if status:
            conditions.append(Refund.status == status)
        if date_from:
            conditions.append(Refund.requested_at >= date_from)
        if date_to:
            conditions.append(Refund.requested_at <= date_to)

        total = self._execute_scalar(select(func.count(Refund.id)).where(*conditions))
        stmt = (
            select(Refund)
            .where(*conditions)
            .order_by(Refund.requested_at.desc(), Refund.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self._execute_query(stmt), int(total or 0)

    def find_stale(
        self,
        tenant_id: str,
        *,
        statuses: Iterable[str],
        requested_before: datetime,
    ) -> List[Refund]:
        stmt = (
            select(Refund)
            .where(
                Refund.tenant_id == tenant_id,
                Refund.status.in_(list(statuses)),
                Refund.requested_at < requested_before,
            )
            .order_by(Refund.requested_at.asc())
        )
        return self._execute_query(stmt)

    def get_stats_rows(self, tenant_id: str) -> Sequence[Row[Any]]:
        """Return the minimal columns needed to aggregate refund statistics."""
        stmt = select(
            Refund.status,
            Refund.eligible_amount,
            Refund.approved_amount,
            Refund.processed_amount,
            Refund.completed_at,
        ).where(Refund.tenant_id == tenant_id)
        try:
            return self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading refund stats rows: {str(e)}")
            raise RepositoryException(f"Failed to load refund stats: {str(e)}")

    def tenant_ids_with_status(self, statuses: Iterable[str]) -> List[str]:
        stmt = select(Refund.tenant_id).where(Refund.status.in_(list(statuses))).distinct()
        try:
            return [row[0] for row in self.db.execute(stmt).all()]
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing tenants with open refunds: {str(e)}")
            raise RepositoryException(f"Failed to list tenants: {str(e)}")

    def list_for_customer(self, customer_id: str) -> List[Refund]:
        stmt = (
            select(Refund)
            .where(Refund.customer_id == customer_id)
            .order_by(Refund.requested_at.desc())
        )
        return self._execute_query(stmt)

    def get_by_booking_for_customer(self, booking_id: str, customer_id: str) -> Optional[Refund]:
        return self.find_one_by(booking_id=booking_id, customer_id=customer_id)

    # ----------------------------------------------------------------- writes

    def transition_status(
        self,
        refund_id: str,
        tenant_id: str,
        *,
        expected_status: str,
        values: dict[str, Any],
    ) -> Optional[Refund]:
        """
        Compare-and-swap update of a refund row.

        The UPDATE only matches while the row still holds ``expected_status``.

        Returns:
            The refreshed refund, or None if another writer moved it first
        """
        stmt = (
            update(Refund)
            .where(
                Refund.id == refund_id,
                Refund.tenant_id == tenant_id,
                Refund.status == expected_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning refund {refund_id}: {str(e)}")
            raise RepositoryException(f"Failed to update refund: {str(e)}")

        if result.rowcount != 1:
            self.logger.info(
                "Refund status changed concurrently",
                extra={"refund_id": refund_id, "expected_status": expected_status},
            )
            return None

        return self.db.get(Refund, refund_id, populate_existing=True)

    def update_fields(self, refund_id: str, tenant_id: str, **values: Any) -> bool:
        """Update non-status fields; returns False if the refund is not the tenant's."""
        stmt = (
            update(Refund)
            .where(Refund.id == refund_id, Refund.tenant_id == tenant_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating refund {refund_id}: {str(e)}")
            raise RepositoryException(f"Failed to update refund: {str(e)}")
        return result.rowcount == 1

    # ---------------------------------------------------------------- history

    def append_history(
        self,
        *,
        refund_id: str,
        previous_status: Optional[str],
        new_status: str,
        changed_by: Optional[str],
        changed_by_name: Optional[str],
        notes: Optional[str] = None,
    ) -> RefundStatusHistory:
        entry = RefundStatusHistory(
            refund_id=refund_id,
            previous_status=previous_status,
            new_status=new_status,
            changed_by=changed_by,
            changed_by_name=changed_by_name,
            notes=notes,
        )
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error writing refund history for {refund_id}: {str(e)}")
            raise RepositoryException(f"Failed to write refund history: {str(e)}")
        return entry

    def list_history(self, refund_id: str) -> List[RefundStatusHistory]:
        stmt = (
            select(RefundStatusHistory)
            .where(RefundStatusHistory.refund_id == refund_id)
            .order_by(RefundStatusHistory.created_at.asc(), RefundStatusHistory.id.asc())
        )
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading refund history for {refund_id}: {str(e)}")
            raise RepositoryException(f"Failed to load refund history: {str(e)}")
