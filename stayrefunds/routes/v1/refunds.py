# stayrefunds/routes/v1/refunds.py
"""
Refund routes - API v1

Versioned refund endpoints under /api/v1/refunds.
All business logic delegated to the refund services.

Endpoints:
    GET /                              → List tenant refunds (filtered, paginated)
    GET /stats                         → Dashboard statistics
    GET /escalations                   → Refunds waiting past the escalation threshold
    POST /calculate                    → Preview the refund for a booking
    GET /{refund_id}                   → Refund detail
    GET /{refund_id}/history           → Status history, oldest first
    POST /                             → Create refund for a cancelled booking
    PATCH /{refund_id}/review          → requested → under_review
    PATCH /{refund_id}/approve         → Approve (optionally overriding the amount)
    PATCH /{refund_id}/reject          → Reject with a reason
    POST /{refund_id}/process          → Settle via Paystack, or mark for manual transfer
    POST /{refund_id}/complete         → Record a manual transfer as completed
    POST /{refund_id}/fail             → Record a failed transfer
    PATCH /{refund_id}/notes           → Update staff notes
"""

import asyncio
from datetime import datetime
import logging
from typing import List, NoReturn, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.params import Path
from fastapi.responses import JSONResponse

from ...api.dependencies import (
    ActorContext,
    get_actor,
    get_refund_reporting_service,
    get_refund_settlement_service,
    get_refund_workflow_service,
    get_tenant_id,
)
from ...core.enums import RefundPaymentMethod, RefundStatus
from ...core.exceptions import DomainException
from ...schemas.refund import (
    ApproveRefundRequest,
    CompleteRefundRequest,
    FailRefundRequest,
    ProcessRefundRequest,
    RefundBookingRequest,
    RefundCalculationResponse,
    RefundFilters,
    RefundListItem,
    RefundListResponse,
    RefundResponse,
    RefundStats,
    RefundStatusHistoryResponse,
    RejectRefundRequest,
    SettlementResponse,
    StaffNotesRequest,
)
from ...services.refund_reporting_service import RefundReportingService
from ...services.refund_settlement_service import RefundSettlementService
from ...services.refund_workflow_service import RefundWorkflowService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["refunds-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"

METHOD_LABELS = {
    RefundPaymentMethod.EFT.value: "EFT (Bank Transfer)",
    RefundPaymentMethod.PAYPAL.value: "PayPal",
    RefundPaymentMethod.MANUAL.value: "Manual",
}


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.get("/", response_model=RefundListResponse)
async def list_refunds(
    status_filter: Optional[RefundStatus] = Query(None, alias="status"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    reporting_service: RefundReportingService = Depends(get_refund_reporting_service),
) -> RefundListResponse:
    """List the tenant's refunds, newest request first. ``limit`` is capped server-side."""
    filters = RefundFilters(
        status=status_filter, date_from=date_from, date_to=date_to, limit=limit, offset=offset
    )
    try:
        return await asyncio.to_thread(
            reporting_service.get_refunds_by_tenant, tenant_id, filters
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/stats", response_model=RefundStats)
async def get_refund_stats(
    tenant_id: str = Depends(get_tenant_id),
    reporting_service: RefundReportingService = Depends(get_refund_reporting_service),
) -> RefundStats:
    try:
        return await asyncio.to_thread(reporting_service.get_refund_stats, tenant_id)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/escalations", response_model=List[RefundListItem])
async def get_escalations(
    hours: Optional[int] = Query(None, ge=1),
    tenant_id: str = Depends(get_tenant_id),
    reporting_service: RefundReportingService = Depends(get_refund_reporting_service),
) -> List[RefundListItem]:
    """Refunds still requested or approved after the escalation threshold."""
    try:
        return await asyncio.to_thread(
            reporting_service.get_pending_for_escalation, tenant_id, hours
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/calculate", response_model=RefundCalculationResponse)
async def calculate_refund(
    payload: RefundBookingRequest,
    tenant_id: str = Depends(get_tenant_id),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundCalculationResponse:
    try:
        return await asyncio.to_thread(
            workflow_service.calculate_refund_preview, payload.booking_id, tenant_id
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
async def create_refund(
    payload: RefundBookingRequest,
    tenant_id: str = Depends(get_tenant_id),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundResponse:
    """Open a refund for a booking that has already been cancelled."""
    try:
        refund = await asyncio.to_thread(
            workflow_service.create_refund_from_cancellation,
            payload.booking_id,
            tenant_id,
            require_cancelled=True,
        )
        return RefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Refund-scoped routes
# ============================================================================


@router.get("/{refund_id}", response_model=RefundListItem)
async def get_refund(
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    tenant_id: str = Depends(get_tenant_id),
    reporting_service: RefundReportingService = Depends(get_refund_reporting_service),
) -> RefundListItem:
    try:
        return await asyncio.to_thread(reporting_service.get_refund_by_id, refund_id, tenant_id)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{refund_id}/history", response_model=List[RefundStatusHistoryResponse])
async def get_refund_history(
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    tenant_id: str = Depends(get_tenant_id),
    reporting_service: RefundReportingService = Depends(get_refund_reporting_service),
) -> List[RefundStatusHistoryResponse]:
    try:
        return await asyncio.to_thread(
            reporting_service.get_status_history, refund_id, tenant_id
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{refund_id}/review", response_model=RefundResponse)
async def review_refund(
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    actor: ActorContext = Depends(get_actor),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundResponse:
    try:
        refund = await asyncio.to_thread(
            workflow_service.mark_under_review,
            refund_id,
            actor.tenant_id,
            actor.actor_id,
            actor.actor_name,
        )
        return RefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{refund_id}/approve", response_model=RefundResponse)
async def approve_refund(
    payload: ApproveRefundRequest,
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    actor: ActorContext = Depends(get_actor),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundResponse:
    try:
        refund = await asyncio.to_thread(
            workflow_service.approve,
            refund_id,
            actor.tenant_id,
            actor.actor_id,
            actor.actor_name,
            payload.approved_amount,
            payload.override_reason,
            payload.notes,
        )
        return RefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund(
    payload: RejectRefundRequest,
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    actor: ActorContext = Depends(get_actor),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundResponse:
    try:
        refund = await asyncio.to_thread(
            workflow_service.reject,
            refund_id,
            actor.tenant_id,
            actor.actor_id,
            actor.actor_name,
            payload.rejection_reason,
        )
        return RefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{refund_id}/process", response_model=SettlementResponse)
async def process_refund(
    payload: ProcessRefundRequest,
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    actor: ActorContext = Depends(get_actor),
    reporting_service: RefundReportingService = Depends(get_refund_reporting_service),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
    settlement_service: RefundSettlementService = Depends(get_refund_settlement_service),
) -> Union[SettlementResponse, JSONResponse]:
    """
    Start settlement of an approved refund.

    Paystack refunds are sent to the gateway immediately; the response carries
    the recorded outcome (502 when the gateway declined or was unreachable).
    Other methods only move the refund to ``processing``; staff complete the
    transfer by hand and then call ``/complete``.
    """
    try:
        refund = await asyncio.to_thread(
            reporting_service.get_refund_by_id, refund_id, actor.tenant_id
        )
        method = payload.method.value if payload.method else refund.payment_method

        if method == RefundPaymentMethod.PAYSTACK.value:
            result = await asyncio.to_thread(
                settlement_service.process_gateway_refund,
                refund_id,
                actor.tenant_id,
                actor.actor_id,
                actor.actor_name,
            )
            if not result.success:
                return JSONResponse(
                    status_code=status.HTTP_502_BAD_GATEWAY,
                    content=result.model_dump(mode="json"),
                )
            return result

        processing = await asyncio.to_thread(
            workflow_service.mark_processing,
            refund_id,
            actor.tenant_id,
            actor.actor_id,
            actor.actor_name,
        )
        label = METHOD_LABELS.get(method or "", method or "manual")
        return SettlementResponse(
            success=True,
            message=(
                f"Refund marked for {label} processing. "
                "Complete the transfer and mark as complete."
            ),
            refund=RefundResponse.model_validate(processing),
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{refund_id}/complete", response_model=RefundResponse)
async def complete_refund(
    payload: CompleteRefundRequest,
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    actor: ActorContext = Depends(get_actor),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundResponse:
    try:
        refund = await asyncio.to_thread(
            workflow_service.complete,
            refund_id,
            actor.tenant_id,
            actor.actor_id,
            actor.actor_name,
            payload.processed_amount,
            payload.refund_reference,
        )
        return RefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{refund_id}/fail", response_model=RefundResponse)
async def fail_refund(
    payload: FailRefundRequest,
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    actor: ActorContext = Depends(get_actor),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundResponse:
    try:
        refund = await asyncio.to_thread(
            workflow_service.fail,
            refund_id,
            actor.tenant_id,
            actor.actor_id,
            actor.actor_name,
            payload.failure_reason,
        )
        return RefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{refund_id}/notes", response_model=RefundResponse)
async def update_staff_notes(
    payload: StaffNotesRequest,
    refund_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    tenant_id: str = Depends(get_tenant_id),
    workflow_service: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundResponse:
    try:
        refund = await asyncio.to_thread(
            workflow_service.update_staff_notes, refund_id, tenant_id, payload.staff_notes
        )
        return RefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)
