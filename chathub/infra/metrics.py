"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

# Chat lifecycle metrics
chat_events_total = Counter(
    "chat_events_total",
    "Chat lifecycle events processed",
    ["event", "status"],  # status: ok or the error code
)

chat_rate_limited_total = Counter(
    "chat_rate_limited_total",
    "Chat events rejected by the rate limiter",
)

# Real-time gateway metrics
websocket_connections = Gauge(
    "websocket_connections",
    "Number of open real-time connections",
)

broadcasts_total = Counter(
    "chat_broadcasts_total",
    "Events broadcast to a channel",
    ["event"],
)

broadcast_duration = Histogram(
    "chat_broadcast_duration_seconds",
    "Time spent fanning an event out to a channel",
)

# Notification metrics
notifications_total = Counter(
    "push_notifications_total",
    "Push notification hand-offs",
    ["status"],  # queued, dropped, sent, failed
)

push_tokens_total = Counter(
    "push_tokens_total",
    "Push tokens targeted by multicast calls",
    ["outcome"],  # success or failure as reported by the provider
)

notification_queue_depth = Gauge(
    "notification_queue_depth",
    "Notifications waiting for the dispatcher worker",
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
