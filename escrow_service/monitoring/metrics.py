"""
Prometheus metrics for escrow lifecycle monitoring.

Tracks:
- Escrow operations by operation and outcome
- Gateway charge counts and duration by payment method
- Notification emit failures
- HTTP request duration
"""
from prometheus_client import Counter, Histogram

# Escrow lifecycle metrics
escrow_operations_total = Counter(
    "escrow_operations_total",
    "Total escrow lifecycle operations",
    ["operation", "outcome"],  # outcome: success, degraded, or an error kind
)

escrow_operation_duration_seconds = Histogram(
    "escrow_operation_duration_seconds",
    "Escrow operation duration in seconds",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Gateway metrics
gateway_charges_total = Counter(
    "gateway_charges_total",
    "Total gateway charge attempts",
    ["method", "outcome"],  # approved, declined, timeout, error
)

gateway_charge_duration_seconds = Histogram(
    "gateway_charge_duration_seconds",
    "Gateway charge duration in seconds",
    ["method"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 2.5, 5.0, 7.5, 10.0),
)

# Notification metrics
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Notifications that could not be written after a committed transition",
    ["type"],
)

# HTTP metrics
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "status_code"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_operation(operation: str, outcome: str, duration_seconds: float) -> None:
        """Record an escrow operation outcome."""
        escrow_operations_total.labels(operation=operation, outcome=outcome).inc()
        escrow_operation_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_charge(method: str, outcome: str, duration_seconds: float) -> None:
        """Record a gateway charge attempt."""
        gateway_charges_total.labels(method=method, outcome=outcome).inc()
        gateway_charge_duration_seconds.labels(method=method).observe(duration_seconds)

    @staticmethod
    def record_notification_failure(notification_type: str) -> None:
        """Record a notification that was lost."""
        notifications_failed_total.labels(type=notification_type).inc()

    @staticmethod
    def record_http_request(method: str, status_code: int, duration_seconds: float) -> None:
        """Record HTTP request duration."""
        http_request_duration_seconds.labels(
            method=method, status_code=str(status_code)
        ).observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
