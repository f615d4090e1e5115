# stayrefunds/tasks/refund_tasks.py
"""
Celery tasks for refund escalation.

The hourly scan only reports: it counts refunds stuck in ``requested`` or
``approved`` per tenant, logs them and publishes a gauge. It never changes
a refund's status.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from stayrefunds.database import SessionLocal, init_session_factory
from stayrefunds.monitoring.prometheus_metrics import prometheus_metrics
from stayrefunds.services.refund_reporting_service import RefundReportingService
from stayrefunds.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def scan_stale_refunds(
    db: Session, hours: Optional[int] = None, reporting: Optional[RefundReportingService] = None
) -> Dict[str, int]:
    """Return stale refund counts keyed by tenant id."""
    reporting = reporting or RefundReportingService(db)
    counts: Dict[str, int] = {}
    for tenant_id in reporting.tenants_with_open_refunds():
        stale = reporting.find_stale_refunds(tenant_id, hours)
        counts[tenant_id] = len(stale)
        prometheus_metrics.set_stale_refunds(tenant_id, len(stale))
        if stale:
            logger.warning(
                "Refunds awaiting action past escalation threshold",
                extra={
                    "tenant_id": tenant_id,
                    "stale_count": len(stale),
                    "refund_ids": [refund.id for refund in stale],
                },
            )
    return counts


@celery_app.task(
    name="refunds.scan_stale_refunds",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def scan_stale_refunds_task(self: Any, hours: Optional[int] = None) -> Dict[str, Any]:
    init_session_factory()
    db = SessionLocal()
    try:
        counts = scan_stale_refunds(db, hours)
        logger.info(
            "Stale refund scan completed",
            extra={"tenants": len(counts), "stale_total": sum(counts.values())},
        )
        return {"tenants": len(counts), "stale": counts}
    except Exception as exc:
        logger.error("Stale refund scan failed: %s", exc, exc_info=True)
        raise self.retry(exc=exc)
    finally:
        db.close()
