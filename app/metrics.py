"""
Prometheus metrics for the assistant webhook.

This module provides:
- HTTP request counter (method, path, status)
- Webhook pipeline outcome counter (result)
- Intent analysis outcome counter (outcome)
- Reply path counter (path)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: ineligible, no_settings, disabled, sent, send_failed,
# invalid_signature, validation_error
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing outcomes",
    labelnames=["result"]
)

# outcome: intent, no_intent, unavailable
intent_analysis_total = Counter(
    "intent_analysis_total",
    "Intent analysis outcomes",
    labelnames=["outcome"]
)

# path: product_found, product_not_found, conversation, error
reply_path_total = Counter(
    "reply_path_total",
    "Replies built per pipeline path",
    labelnames=["path"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    webhook_requests_total.labels(result=result).inc()


def record_intent_analysis(outcome: str) -> None:
    intent_analysis_total.labels(outcome=outcome).inc()


def record_reply_path(path: str) -> None:
    reply_path_total.labels(path=path).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
