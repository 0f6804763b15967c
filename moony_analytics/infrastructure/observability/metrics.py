"""Prometheus metrics for webhook intake, statistics runs and reconciliation"""

from prometheus_client import Counter, Gauge, Histogram

# Webhook metrics
webhook_events_counter = Counter(
    "moony_webhook_events_total",
    "Plaid webhook deliveries by outcome",
    ["outcome"],  # processed | ignored | rejected | failed
)

webhook_verification_failures_counter = Counter(
    "moony_webhook_verification_failures_total",
    "Webhook deliveries rejected by signature verification",
    ["reason"],
)

# Provider metrics
provider_fetch_failures_counter = Counter(
    "moony_provider_fetch_failures_total",
    "Failed Plaid API calls",
    ["error_class"],  # transient | permanent
)

provider_fetch_latency_histogram = Histogram(
    "moony_provider_fetch_seconds",
    "Time to fetch a full transaction history",
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Statistics pipeline metrics
statistics_runs_counter = Counter(
    "moony_statistics_runs_total",
    "Completed statistics runs by outcome",
    ["outcome", "trigger"],  # succeeded | failed
)

statistics_retries_counter = Counter(
    "moony_statistics_retries_total",
    "Statistics attempts retried after a transient error",
)

# Reconciliation metrics
reconciliation_pending_gauge = Gauge(
    "moony_reconciliation_pending_users",
    "Connected users without statistics at the last scan",
)

reconciliation_users_counter = Counter(
    "moony_reconciliation_users_total",
    "Users re-driven by the reconciliation scanner",
    ["outcome"],  # succeeded | failed
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_webhook_outcome(success: bool, retryable: bool, acted: bool) -> None:
    """Bucket a webhook delivery result"""
    if success:
        outcome = "processed" if acted else "ignored"
    elif retryable:
        outcome = "failed"
    else:
        outcome = "rejected"
    webhook_events_counter.labels(outcome=outcome).inc()
