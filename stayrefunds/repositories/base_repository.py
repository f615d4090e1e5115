# stayrefunds/repositories/base_repository.py
"""
Shared data access for tenants, bookings and refunds.

Repositories flush but never commit: the refund services decide where a
transaction ends. Every SQLAlchemy failure leaves this layer as a
``RepositoryException`` so services never see driver errors.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import DuplicateRecordException, RepositoryException

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """
    Lookup and insert helpers bound to one mapped model.

    Attributes:
        db: Session owned by the calling service
        model: Mapped class the repository reads and writes
    """

    def __init__(self, db: Session, model: Type[ModelT]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str) -> Optional[ModelT]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> ModelT:
        """
        Insert a row and flush so its ULID and defaults are populated.

        Raises:
            DuplicateRecordException: On a unique constraint hit (one refund per booking)
            RepositoryException: On any other database failure
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.warning("Constraint violated inserting %s: %s", self.model.__name__, exc)
            self.db.rollback()
            raise DuplicateRecordException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to insert {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def find_one_by(self, **filters: Any) -> Optional[ModelT]:
        """First row whose columns equal ``filters``, or None."""
        try:
            return self.db.execute(select(self.model).filter_by(**filters)).scalars().first()
        except SQLAlchemyError as e:
            self.logger.error(f"Lookup on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Failed to find record: {str(e)}")

    def _execute_query(self, stmt: Select[Any]) -> List[ModelT]:
        # unique() is required because Refund eager-joins its booking
        try:
            return list(self.db.execute(stmt).scalars().unique().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Select on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")

    def _execute_scalar(self, stmt: Select[Any]) -> Any:
        try:
            return self.db.execute(stmt).scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"Scalar select on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Scalar query failed: {str(e)}")
