# stayrefunds/core/exceptions.py
"""
Domain-specific exceptions for the refund lifecycle engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Iterable, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class RefundNotFoundException(NotFoundException):
    def __init__(self, refund_id: str, tenant_id: str):
        super().__init__(
            message="Refund not found",
            code="REFUND_NOT_FOUND",
            details={"refund_id": refund_id, "tenant_id": tenant_id},
        )


class BookingNotFoundException(NotFoundException):
    def __init__(self, booking_id: str, tenant_id: str | None = None):
        super().__init__(
            message="Booking not found",
            code="BOOKING_NOT_FOUND",
            details={"booking_id": booking_id, "tenant_id": tenant_id},
        )


class TenantNotFoundException(NotFoundException):
    def __init__(self, tenant_id: str):
        super().__init__(
            message="Tenant not found",
            code="TENANT_NOT_FOUND",
            details={"tenant_id": tenant_id},
        )


class RefundAlreadyExistsException(ConflictException):
    """Raised when a booking already has a refund record."""

    def __init__(self, booking_id: str, existing_refund_id: str | None = None):
        super().__init__(
            message="Refund already exists for this booking",
            code="REFUND_ALREADY_EXISTS",
            details={"booking_id": booking_id, "existing_refund_id": existing_refund_id},
        )


class InvalidRefundTransitionException(BusinessRuleException):
    """Raised when a refund is not in a state that permits the requested transition."""

    def __init__(
        self,
        *,
        operation: str,
        current_status: str,
        required_statuses: Iterable[str],
    ):
        required = sorted(required_statuses)
        super().__init__(
            message=(
                f"Cannot {operation} refund in '{current_status}' status; "
                f"requires {' or '.join(required)}"
            ),
            code="INVALID_REFUND_TRANSITION",
            details={
                "operation": operation,
                "current_status": current_status,
                "required_statuses": required,
            },
        )


class GatewayNotConfiguredException(BusinessRuleException):
    """Raised when a tenant has no usable payment gateway credentials."""

    def __init__(self, tenant_id: str, mode: str):
        super().__init__(
            message="Paystack not configured for this tenant",
            code="GATEWAY_NOT_CONFIGURED",
            details={"tenant_id": tenant_id, "mode": mode},
        )


class PolicyDecodeError(ValidationException):
    """Raised when a stored cancellation policy snapshot cannot be decoded."""


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


class DuplicateRecordException(RepositoryException):
    """Raised when an insert violates a uniqueness constraint."""
