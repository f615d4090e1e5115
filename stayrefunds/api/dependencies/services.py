"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.refund_reporting_service import RefundReportingService
from ...services.refund_settlement_service import RefundSettlementService
from ...services.refund_workflow_service import RefundWorkflowService
from .database import get_db


def get_refund_workflow_service(db: Session = Depends(get_db)) -> RefundWorkflowService:
    return RefundWorkflowService(db)


def get_refund_settlement_service(
    db: Session = Depends(get_db),
    workflow: RefundWorkflowService = Depends(get_refund_workflow_service),
) -> RefundSettlementService:
    """Settlement shares the workflow's session so both see the same refund."""
    return RefundSettlementService(db, workflow=workflow)


def get_refund_reporting_service(db: Session = Depends(get_db)) -> RefundReportingService:
    return RefundReportingService(db)
