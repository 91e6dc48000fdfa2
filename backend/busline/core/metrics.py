"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, payment_failed, or the domain error code
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking commit latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Booking cancellations',
    ['result']  # cancelled, noop
)

# Store metrics
store_retries = Counter(
    'store_retry_attempts_total',
    'Inventory commit retries due to version conflicts'
)

# Payment metrics
payment_attempts = Counter(
    'payment_attempts_total',
    'Payment attempts',
    ['result']  # approved, declined, timeout, refunded
)

# Real-time metrics
realtime_subscribers = Gauge(
    'realtime_subscribers',
    'Currently connected real-time subscribers'
)

realtime_deliveries = Counter(
    'realtime_deliveries_total',
    'Real-time event deliveries',
    ['result']  # delivered, dropped
)

# Location ingest metrics
location_ticks = Counter(
    'location_ticks_total',
    'Completed location ingest ticks'
)

location_update_failures = Counter(
    'location_update_failures_total',
    'Per-bus location updates that failed within a tick'
)

location_tick_latency = Histogram(
    'location_tick_latency_seconds',
    'Location ingest tick duration',
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )

# Convenience functions for instrumentation
def record_booking_attempt(status: str):
    """Record booking attempt outcome."""
    booking_attempts.labels(status=status).inc()

def record_cancellation(changed: bool):
    booking_cancellations.labels(result="cancelled" if changed else "noop").inc()

def record_payment(result: str):
    """Record payment outcome. Result: approved, declined, timeout, refunded"""
    payment_attempts.labels(result=result).inc()

def record_delivery(delivered: bool):
    realtime_deliveries.labels(result="delivered" if delivered else "dropped").inc()

def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
