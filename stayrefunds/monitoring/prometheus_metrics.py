"""
Prometheus metrics for the refund engine.

Service timings come from the ``@measure_operation`` decorator; the refund
counters are incremented by the workflow and settlement services.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "stayrefunds_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 10.0, 30.0),
)

service_operations_total = Counter(
    "stayrefunds_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "stayrefunds_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

refund_transitions_total = Counter(
    "stayrefunds_refund_transitions_total",
    "Committed refund status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

refund_gateway_calls_total = Counter(
    "stayrefunds_refund_gateway_calls_total",
    "Settlement calls to the payment gateway by outcome",
    ["outcome"],  # success | declined | error
    registry=REGISTRY,
)

stale_refunds = Gauge(
    "stayrefunds_stale_refunds",
    "Refunds waiting past the escalation threshold, per tenant",
    ["tenant_id"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Records refund engine metrics and renders the exposition payload."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'RefundWorkflowService')
            operation: Operation/method name (e.g., 'approve_refund')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_refund_transition(from_status: Optional[str], to_status: str) -> None:
        refund_transitions_total.labels(
            from_status=from_status or "none", to_status=to_status
        ).inc()

    @staticmethod
    def record_gateway_call(outcome: str) -> None:
        refund_gateway_calls_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_stale_refunds(tenant_id: str, count: int) -> None:
        stale_refunds.labels(tenant_id=tenant_id).set(count)

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
