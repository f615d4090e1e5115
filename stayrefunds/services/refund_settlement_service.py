"""
Gateway settlement for approved refunds.

The refund is committed as ``processing`` before Paystack is called, so a
crash mid-call leaves a visible in-flight refund rather than a silent one.
The gateway outcome is then recorded exactly once: ``completed`` with the
gateway's refund id, or ``failed`` with the reason. Nothing is retried here.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import RefundPaymentMethod, RefundStatus
from ..core.exceptions import DomainException, GatewayNotConfiguredException, ValidationException
from ..integrations.paystack_client import PaymentGatewayError, PaystackClient
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..repositories.tenant_repository import GatewayCredentials
from ..schemas.refund import RefundResponse, SettlementResponse
from .base import BaseService
from .refund_workflow_service import RefundWorkflowService

GATEWAY_FAILURE_FALLBACK = "Paystack refund failed"
NETWORK_FAILURE_FALLBACK = "Network error"


def to_minor_units(amount: Decimal | int | str) -> int:
    """Convert a major-unit amount to kobo/cents, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def default_client_factory(credentials: GatewayCredentials) -> PaystackClient:
    return PaystackClient(
        secret_key=credentials.secret_key or "",
        base_url=settings.paystack_base_url,
        timeout=settings.paystack_timeout_seconds,
    )


class RefundSettlementService(BaseService):
    """Moves money for approved Paystack refunds and records the outcome."""

    def __init__(
        self,
        db: Session,
        workflow: Optional[RefundWorkflowService] = None,
        client_factory: Callable[[GatewayCredentials], PaystackClient] = default_client_factory,
    ) -> None:
        super().__init__(db)
        self.workflow = workflow or RefundWorkflowService(db)
        self.tenant_repository = RepositoryFactory.create_tenant_repository(db)
        self.client_factory = client_factory

    @BaseService.measure_operation("process_gateway_refund")
    def process_gateway_refund(
        self,
        refund_id: str,
        tenant_id: str,
        actor_id: str,
        actor_name: Optional[str],
    ) -> SettlementResponse:
        """
        Settle an approved refund through Paystack.

        Pre-check failures raise before anything is written. Once the refund
        is ``processing``, gateway problems are reported in the returned
        ``SettlementResponse`` and recorded as ``failed``; they never raise.

        Raises:
            RefundNotFoundException: If the refund is not the tenant's
            InvalidRefundTransitionException: If the refund is not approved
            ValidationException: If the refund was not paid through Paystack
            ValidationException: If the approved amount is zero
            GatewayNotConfiguredException: If the tenant has no secret key
        """
        refund = self.workflow.get_refund_or_raise(refund_id, tenant_id)
        self.workflow.ensure_status(refund, "process", {RefundStatus.APPROVED})

        if refund.payment_method != RefundPaymentMethod.PAYSTACK.value:
            raise ValidationException(
                "This refund is not for a Paystack payment",
                code="UNSUPPORTED_PAYMENT_METHOD",
                details={"payment_method": refund.payment_method},
            )
        if not refund.original_payment_reference:
            raise ValidationException(
                "Original payment reference not found",
                code="MISSING_PAYMENT_REFERENCE",
            )

        credentials = self.tenant_repository.get_gateway_credentials(tenant_id)
        if not credentials.is_configured:
            raise GatewayNotConfiguredException(tenant_id, credentials.mode)

        amount = refund.settlement_amount
        if amount <= 0:
            raise ValidationException(
                "Approved refund amount is zero; nothing to send to Paystack",
                code="ZERO_SETTLEMENT_AMOUNT",
                details={"refund_id": refund_id, "amount": str(amount)},
            )
        transaction_ref = refund.original_payment_reference
        currency = refund.currency

        self.workflow.mark_processing(refund_id, tenant_id, actor_id, actor_name)

        try:
            client = self.client_factory(credentials)
            payload = client.create_refund(
                transaction=transaction_ref,
                amount=to_minor_units(amount),
                currency=currency,
                customer_note=settings.paystack_customer_note,
                merchant_note=f"Refund ID: {refund_id}",
            )
        except PaymentGatewayError as exc:
            reason = exc.message or NETWORK_FAILURE_FALLBACK
            prometheus_metrics.record_gateway_call("error")
            self.logger.error(
                "Paystack refund call failed",
                extra={"refund_id": refund_id, "tenant_id": tenant_id, "error": reason},
            )
            failed = self.workflow.fail(refund_id, tenant_id, actor_id, actor_name, reason)
            return SettlementResponse(
                success=False,
                message="Failed to process Paystack refund",
                refund=RefundResponse.model_validate(failed),
                error=reason,
            )

        if not payload.get("status"):
            reason = str(payload.get("message") or GATEWAY_FAILURE_FALLBACK)
            prometheus_metrics.record_gateway_call("declined")
            self.logger.warning(
                "Paystack declined refund",
                extra={"refund_id": refund_id, "tenant_id": tenant_id, "error": reason},
            )
            failed = self.workflow.fail(refund_id, tenant_id, actor_id, actor_name, reason)
            return SettlementResponse(
                success=False,
                message=reason,
                refund=RefundResponse.model_validate(failed),
                error=reason,
            )

        prometheus_metrics.record_gateway_call("success")
        gateway_data: Optional[dict[str, Any]] = payload.get("data") or {}
        if not isinstance(gateway_data, dict):
            self.logger.warning(
                "Paystack success response carried no refund object",
                extra={"refund_id": refund_id, "tenant_id": tenant_id},
            )
            gateway_data = None
        gateway_id = gateway_data.get("id") if gateway_data else None
        reference = str(gateway_id) if gateway_id is not None else None

        try:
            completed = self.workflow.complete(
                refund_id, tenant_id, actor_id, actor_name, amount, reference
            )
        except DomainException:
            # Money has moved; the refund stays in processing for manual completion.
            self.logger.error(
                "Paystack refund succeeded but completion was not recorded",
                extra={"refund_id": refund_id, "tenant_id": tenant_id, "reference": reference},
            )
            raise

        self.logger.info(
            "Paystack refund completed",
            extra={"refund_id": refund_id, "tenant_id": tenant_id, "reference": reference},
        )
        return SettlementResponse(
            success=True,
            message="Refund processed successfully",
            refund=RefundResponse.model_validate(completed),
            gateway_data=gateway_data,
        )
