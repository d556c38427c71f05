"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, rejected, conflict, error
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

booking_transitions = Counter(
    'booking_transitions_total',
    'Booking status transitions',
    ['from_status', 'to_status']
)

# Slot capacity metrics
capacity_operations = Counter(
    'slot_capacity_operations_total',
    'Slot counter reserve/release operations',
    ['operation', 'resource', 'result']  # reserve/release, primary/secondary, ok/full/...
)

reservation_retries = Counter(
    'slot_reservation_retries_total',
    'Reservation retries after a conditional update lost a race'
)

capacity_leaks = Counter(
    'capacity_leaks_total',
    'Reservations whose compensating release could not be completed'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

# Notification metrics
notifications_sent = Counter(
    'booking_notifications_total',
    'Booking notifications dispatched',
    ['result']  # sent, failed
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
    """Record booking attempt. Status: success, rejected, conflict, error"""
    booking_attempts.labels(status=status).inc()


def record_transition(from_status: str, to_status: str):
    booking_transitions.labels(from_status=from_status, to_status=to_status).inc()


def record_capacity_operation(operation: str, resource: str, result: str):
    """Record a slot counter operation. Operation: reserve, release"""
    capacity_operations.labels(operation=operation, resource=resource, result=result).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()


def record_notification(sent: bool):
    notifications_sent.labels(result="sent" if sent else "failed").inc()
